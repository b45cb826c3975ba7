# roomprobe/materials.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Optional, Tuple
import pathlib, csv, json

from .logs import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AcousticAttributes:
    absorption: float      # roughly 0..1, energy a passing ray loses
    reflects: bool = False # probes bounce off it

    def clamped(self) -> "AcousticAttributes":
        return AcousticAttributes(max(0.0, float(self.absorption)), bool(self.reflects))


def _mk(absorption: float, reflects: bool) -> AcousticAttributes:
    return AcousticAttributes(absorption, reflects).clamped()


def builtin_library() -> Dict[str, AcousticAttributes]:
    """Small seed library; values are illustrative (add more below or load CSV/JSON)."""
    base: Dict[str, AcousticAttributes] = {}

    # --- Hard surfaces ---
    base["Wall"] = _mk(0.05, True)
    base["Reinforced wall"] = _mk(0.02, True)
    base["Window"] = _mk(0.15, True)
    base["Reinforced window"] = _mk(0.10, True)
    base["Airlock"] = _mk(0.05, True)
    base["Door"] = _mk(0.12, True)

    # --- Furniture ---
    base["Table"] = _mk(0.20, False)
    base["Rack"] = _mk(0.30, False)
    base["Crate"] = _mk(0.40, False)
    base["Machine"] = _mk(0.25, False)

    # --- Diffuse / soft contents ---
    base["Bookshelf"] = _mk(0.90, False)
    base["Curtains"] = _mk(0.80, False)
    base["Plant"] = _mk(0.35, False)
    base["Bed"] = _mk(0.70, False)

    return base


# -------- External libraries (CSV / JSON) --------

def _parse_bool(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    s = str(raw).strip().lower()
    if s in ("1", "true", "yes", "y"):
        return True
    if s in ("0", "false", "no", "n", ""):
        return False
    raise ValueError(f"Not a boolean: {raw!r}")


def load_csv_library(path: str | pathlib.Path) -> Dict[str, AcousticAttributes]:
    """
    CSV schema:
      name,absorption,reflects
    reflects is optional (default false).
    """
    p = pathlib.Path(path)
    if not p.exists(): return {}
    out: Dict[str, AcousticAttributes] = {}
    with p.open("r", newline="", encoding="utf-8") as fh:
        rdr = csv.DictReader(fh)
        for row in rdr:
            name = row["name"].strip()
            out[name] = _mk(float(row["absorption"]), _parse_bool(row.get("reflects") or False))
    logger.debug("loaded %d materials from %s", len(out), p)
    return out


def load_json_library(path: str | pathlib.Path) -> Dict[str, AcousticAttributes]:
    """
    JSON schema list/dict:
      {"name":"Wall","absorption":0.05,"reflects":true}
    """
    p = pathlib.Path(path)
    if not p.exists(): return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(data, dict): data = list(data.values())
    out: Dict[str, AcousticAttributes] = {}
    for row in data:
        name = str(row["name"])
        out[name] = _mk(float(row["absorption"]), _parse_bool(row.get("reflects", False)))
    logger.debug("loaded %d materials from %s", len(out), p)
    return out


def load_library(path: str | pathlib.Path) -> Dict[str, AcousticAttributes]:
    p = pathlib.Path(path)
    if p.suffix.lower() == ".json":
        return load_json_library(p)
    if p.suffix.lower() == ".csv":
        return load_csv_library(p)
    raise ValueError(f"Unsupported material library format: {p.suffix!r}")


def merge_libraries(*libs: Dict[str, AcousticAttributes]) -> Dict[str, AcousticAttributes]:
    merged: Dict[str, AcousticAttributes] = {}
    for lib in libs:
        merged.update(lib)
    return merged


# -------- Entity lookup --------

class AttributeTable:
    """entity -> AcousticAttributes. Entities not listed carry no acoustic data."""

    def __init__(self, entries: Optional[Dict[Hashable, AcousticAttributes]] = None):
        self._data: Dict[Hashable, AcousticAttributes] = dict(entries or {})

    def try_get(self, entity: Hashable) -> Optional[AcousticAttributes]:
        return self._data.get(entity)

    def set(self, entity: Hashable, attrs: AcousticAttributes) -> None:
        self._data[entity] = attrs

    def discard(self, entity: Hashable) -> None:
        self._data.pop(entity, None)

    def __contains__(self, entity) -> bool:
        return entity in self._data

    def __len__(self) -> int:
        return len(self._data)

    @classmethod
    def from_materials(
        cls,
        entities: Iterable[Tuple[Hashable, Optional[str]]],
        library: Dict[str, AcousticAttributes],
    ) -> "AttributeTable":
        """Assign library attributes to (entity, material name) pairs; unknown names are skipped."""
        table = cls()
        missing = set()
        for ent, material in entities:
            if material is None:
                continue
            attrs = library.get(material)
            if attrs is None:
                missing.add(material)
                continue
            table.set(ent, attrs)
        if missing:
            logger.warning("no acoustic attributes for materials: %s", ", ".join(sorted(missing)))
        return table

    @classmethod
    def from_tile_map(cls, tile_map, library: Optional[Dict[str, AcousticAttributes]] = None) -> "AttributeTable":
        library = builtin_library() if library is None else library
        return cls.from_materials(((e.id, e.material) for e in tile_map.entities.values()), library)
