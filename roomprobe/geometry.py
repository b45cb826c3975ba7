# roomprobe/geometry.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Hashable, Iterable, List, Optional, Protocol, Sequence, Tuple
import math
import numpy as np

from .config import Layer
from .logs import get_logger
from .physics import rotate, unit

logger = get_logger(__name__)

# Prefer Embree; fall back to pure triangle
try:
    import trimesh
    from trimesh.ray.ray_pyembree import RayMeshIntersector as _RayIntersector
    _RAY_BACKEND = "embree"
except Exception:
    import trimesh  # ensure available
    try:
        from trimesh.ray.ray_triangle import RayMeshIntersector as _RayIntersector
        _RAY_BACKEND = "triangle"
    except Exception as e:
        raise ImportError(
            "trimesh ray intersector not available. Install trimesh and either pyembree or rtree."
        ) from e


# -----------------------------
# Query results & filters
# -----------------------------

@dataclass(frozen=True, eq=False)
class Hit:
    entity: Hashable
    point: np.ndarray                    # world space
    local_normal: Optional[np.ndarray]   # entity/grid local space
    fraction: float = 0.0                # position along the cast translation, 0..1


class IgnoreRule(Enum):
    NONE = "none"
    NON_REFLECTIVE = "non_reflective"          # entities whose attributes say reflects=False
    WITHOUT_ATTRIBUTES = "without_attributes"  # entities with no acoustic data at all


@dataclass(frozen=True)
class QueryFilter:
    mask: int
    ignore: IgnoreRule = IgnoreRule.NONE
    exclude: FrozenSet[Hashable] = frozenset()   # e.g. the listener itself

    def accepts(self, entity: Hashable, layer: int, attributes) -> bool:
        if entity in self.exclude:
            return False
        if not (int(layer) & int(self.mask)):
            return False
        if self.ignore is IgnoreRule.NONE:
            return True
        attrs = attributes.try_get(entity) if attributes is not None else None
        if self.ignore is IgnoreRule.WITHOUT_ATTRIBUTES:
            return attrs is not None
        # NON_REFLECTIVE: entities without data still block
        return attrs is None or bool(attrs.reflects)


def probe_filter(mask: int, exclude: Iterable[Hashable] = ()) -> QueryFilter:
    return QueryFilter(mask=int(mask), ignore=IgnoreRule.NON_REFLECTIVE, exclude=frozenset(exclude))


def path_filter(mask: int, exclude: Iterable[Hashable] = ()) -> QueryFilter:
    return QueryFilter(mask=int(mask), ignore=IgnoreRule.WITHOUT_ATTRIBUTES, exclude=frozenset(exclude))


@dataclass(frozen=True)
class TileRef:
    grid: Hashable
    x: int
    y: int


class SpatialWorld(Protocol):
    """What the ray kernel and sampler need from the world."""

    def cast(self, map_id, origin, translation, query_filter: QueryFilter) -> List[Hit]: ...
    def normal_to_world(self, entity, local_normal) -> np.ndarray: ...
    def is_valid(self, entity) -> bool: ...
    def map_of(self, entity): ...
    def entity_position(self, entity) -> np.ndarray: ...
    def tile_ref(self, map_id, position) -> Optional[TileRef]: ...
    def is_vacuum(self, tile: TileRef) -> bool: ...
    def is_rooved(self, tile: TileRef) -> Optional[bool]: ...


# -----------------------------
# Tile grid world
# -----------------------------

SPACE = 0
FLOOR = 1


@dataclass
class Entity:
    id: int
    center: np.ndarray                  # grid local
    half_extents: np.ndarray            # grid local, axis aligned
    layer: int
    material: Optional[str] = None
    name: str = ""
    attached: bool = True


@dataclass(frozen=True)
class LegendEntry:
    material: str
    layer: int
    half_extents: Tuple[float, float] = (0.5, 0.5)


DEFAULT_LEGEND: Dict[str, LegendEntry] = {
    "#": LegendEntry("Wall", int(Layer.IMPASSABLE | Layer.OPAQUE)),
    "R": LegendEntry("Reinforced wall", int(Layer.IMPASSABLE | Layer.OPAQUE)),
    "W": LegendEntry("Window", int(Layer.IMPASSABLE)),
    "D": LegendEntry("Door", int(Layer.IMPASSABLE | Layer.OPAQUE)),
    "A": LegendEntry("Airlock", int(Layer.IMPASSABLE | Layer.OPAQUE)),
    "T": LegendEntry("Table", int(Layer.MID_IMPASSABLE), (0.4, 0.4)),
    "K": LegendEntry("Rack", int(Layer.MID_IMPASSABLE), (0.4, 0.4)),
    "M": LegendEntry("Machine", int(Layer.MID_IMPASSABLE), (0.45, 0.45)),
    "C": LegendEntry("Crate", int(Layer.LOW_IMPASSABLE), (0.35, 0.35)),
    "B": LegendEntry("Bookshelf", int(Layer.MID_IMPASSABLE | Layer.OPAQUE), (0.45, 0.3)),
    "P": LegendEntry("Plant", int(Layer.LOW_IMPASSABLE), (0.25, 0.25)),
    "c": LegendEntry("Curtains", int(Layer.OPAQUE), (0.5, 0.1)),
    "b": LegendEntry("Bed", int(Layer.LOW_IMPASSABLE), (0.45, 0.45)),
}

ROOFED_FLOOR = "."
OPEN_FLOOR = ","
SPACE_CHAR = " "
LISTENER_CHAR = "@"
LISTENER_HALF_EXTENT = 0.25


class TileMap:
    """
    A single rotatable tile grid on one map.

    Entities are axis-aligned boxes in grid-local coordinates. Ray casts are a
    vectorised slab test against every entity box the filter accepts.
    """

    def __init__(self, width: int, height: int, *, map_id: Hashable = 0, grid_id: Hashable = "grid",
                 origin: Sequence[float] = (0.0, 0.0), angle: float = 0.0,
                 with_roofs: bool = True, attributes=None):
        if width <= 0 or height <= 0:
            raise ValueError("TileMap needs positive dimensions")
        self.width = int(width)
        self.height = int(height)
        self.map_id = map_id
        self.grid_id = grid_id
        self.origin = np.asarray(origin, dtype=float)
        self.angle = float(angle)
        self.tiles = np.full((self.height, self.width), FLOOR, dtype=np.uint8)
        self.roofed: Optional[np.ndarray] = np.ones((self.height, self.width), dtype=bool) if with_roofs else None
        self.attributes = attributes
        self.entities: Dict[int, Entity] = {}
        self.listener: Optional[int] = None
        self._next_id = 1
        self._arrays = None
        # bumped whenever entities change; mesh scenes rebuild on mismatch
        self.revision = 0

    # ---- construction ----

    def add_entity(self, x: float, y: float, *, layer: int, material: Optional[str] = None,
                   half_extents: Sequence[float] = (0.5, 0.5), name: str = "") -> int:
        """Place an entity box centred on grid-local (x, y)."""
        eid = self._next_id
        self._next_id += 1
        self.entities[eid] = Entity(
            id=eid,
            center=np.array([float(x), float(y)]),
            half_extents=np.asarray(half_extents, dtype=float),
            layer=int(layer),
            material=material,
            name=name or (material or f"entity{eid}"),
        )
        self._invalidate()
        return eid

    def add_tile_entity(self, ix: int, iy: int, entry: LegendEntry) -> int:
        return self.add_entity(ix + 0.5, iy + 0.5, layer=entry.layer, material=entry.material,
                               half_extents=entry.half_extents)

    def add_listener(self, x: float, y: float) -> int:
        eid = self.add_entity(x, y, layer=int(Layer.MOB),
                              half_extents=(LISTENER_HALF_EXTENT, LISTENER_HALF_EXTENT), name="listener")
        self.listener = eid
        return eid

    def remove_entity(self, entity: int) -> None:
        self.entities.pop(entity, None)
        if self.listener == entity:
            self.listener = None
        self._invalidate()

    def detach(self, entity: int) -> None:
        """Move an entity to nullspace: it stays valid but has no map."""
        self.entities[entity].attached = False
        self._invalidate()

    def _invalidate(self) -> None:
        self._arrays = None
        self.revision += 1

    def set_tile(self, ix: int, iy: int, kind: int, roofed: Optional[bool] = None) -> None:
        self.tiles[iy, ix] = kind
        if roofed is not None and self.roofed is not None:
            self.roofed[iy, ix] = bool(roofed)

    @classmethod
    def from_ascii(cls, text: str, legend: Optional[Dict[str, LegendEntry]] = None, **kwargs) -> "TileMap":
        """
        Build a grid from rows of characters, first row = highest y.

          ' '  space (vacuum)     '.'  roofed floor     ','  unroofed floor
          '@'  listener on roofed floor
          any legend key: that entity on roofed floor
        """
        legend = DEFAULT_LEGEND if legend is None else legend
        rows = [r.rstrip("\n") for r in text.strip("\n").splitlines()]
        if not rows:
            raise ValueError("Empty map layout")
        width = max(len(r) for r in rows)
        height = len(rows)
        tm = cls(width, height, **kwargs)
        for row_idx, row in enumerate(rows):
            iy = height - 1 - row_idx
            for ix in range(width):
                ch = row[ix] if ix < len(row) else SPACE_CHAR
                if ch == SPACE_CHAR:
                    tm.set_tile(ix, iy, SPACE, roofed=False)
                elif ch == OPEN_FLOOR:
                    tm.set_tile(ix, iy, FLOOR, roofed=False)
                elif ch == ROOFED_FLOOR:
                    tm.set_tile(ix, iy, FLOOR, roofed=True)
                elif ch == LISTENER_CHAR:
                    tm.set_tile(ix, iy, FLOOR, roofed=True)
                    if tm.listener is not None:
                        raise ValueError("Map layout has more than one listener '@'")
                    tm.add_listener(ix + 0.5, iy + 0.5)
                elif ch in legend:
                    tm.set_tile(ix, iy, FLOOR, roofed=True)
                    tm.add_tile_entity(ix, iy, legend[ch])
                else:
                    raise ValueError(f"Unknown map character {ch!r} at row {row_idx}, column {ix}")
        return tm

    # ---- frames ----

    def to_local(self, p) -> np.ndarray:
        return rotate(np.asarray(p, dtype=float) - self.origin, -self.angle)

    def to_world(self, p) -> np.ndarray:
        return rotate(np.asarray(p, dtype=float), self.angle) + self.origin

    # ---- transform / tile port ----

    def is_valid(self, entity) -> bool:
        return entity is not None and entity in self.entities

    def map_of(self, entity):
        ent = self.entities.get(entity)
        if ent is None or not ent.attached:
            return None
        return self.map_id

    def entity_position(self, entity) -> np.ndarray:
        return self.to_world(self.entities[entity].center)

    def normal_to_world(self, entity, local_normal) -> np.ndarray:
        return unit(rotate(np.asarray(local_normal, dtype=float), self.angle))

    def tile_ref(self, map_id, position) -> Optional[TileRef]:
        if map_id != self.map_id:
            return None
        lx, ly = self.to_local(position)
        ix, iy = int(math.floor(lx)), int(math.floor(ly))
        if 0 <= ix < self.width and 0 <= iy < self.height:
            return TileRef(self.grid_id, ix, iy)
        return None

    def is_vacuum(self, tile: TileRef) -> bool:
        return int(self.tiles[tile.y, tile.x]) == SPACE

    def is_rooved(self, tile: TileRef) -> Optional[bool]:
        if self.roofed is None:
            return None
        return bool(self.roofed[tile.y, tile.x])

    # ---- spatial query port ----

    def _entity_arrays(self):
        if self._arrays is None:
            ents = [e for e in self.entities.values() if e.attached]
            ids = np.array([e.id for e in ents], dtype=np.int64)
            centers = np.array([e.center for e in ents], dtype=float).reshape(-1, 2)
            halves = np.array([e.half_extents for e in ents], dtype=float).reshape(-1, 2)
            layers = np.array([e.layer for e in ents], dtype=np.int64)
            self._arrays = (ids, centers - halves, centers + halves, layers)
        return self._arrays

    def cast(self, map_id, origin, translation, query_filter: QueryFilter) -> List[Hit]:
        if map_id != self.map_id:
            return []
        ids, mins, maxs, layers = self._entity_arrays()
        if ids.size == 0:
            return []

        o = self.to_local(origin)
        t = rotate(np.asarray(translation, dtype=float), -self.angle)
        if float(np.linalg.norm(t)) <= 0.0:
            return []

        keep = np.array([query_filter.accepts(int(e), int(l), self.attributes) for e, l in zip(ids, layers)],
                        dtype=bool)
        if not keep.any():
            return []
        ids, mins, maxs = ids[keep], mins[keep], maxs[keep]

        # slab test, parameterised over the translation (0..1)
        parallel = np.abs(t) < 1e-12
        safe_t = np.where(parallel, 1.0, t)
        t1 = (mins - o) / safe_t
        t2 = (maxs - o) / safe_t
        tnear = np.minimum(t1, t2)
        tfar = np.maximum(t1, t2)
        inside = (o >= mins) & (o <= maxs)
        tnear = np.where(parallel, np.where(inside, -np.inf, np.inf), tnear)
        tfar = np.where(parallel, np.where(inside, np.inf, -np.inf), tfar)

        enter = tnear.max(axis=1)
        leave = tfar.min(axis=1)
        axis = tnear.argmax(axis=1)
        # boxes containing the origin are not reported
        mask = (enter <= leave) & (enter >= 0.0) & (enter <= 1.0)
        if not mask.any():
            return []

        hits: List[Hit] = []
        for i in np.flatnonzero(mask)[np.argsort(enter[mask], kind="stable")]:
            frac = float(enter[i])
            normal = np.zeros(2, dtype=float)
            ax = int(axis[i])
            normal[ax] = -1.0 if t[ax] > 0 else 1.0
            hits.append(Hit(
                entity=int(ids[i]),
                point=self.to_world(o + t * frac),
                local_normal=normal,
                fraction=frac,
            ))
        return hits


# -----------------------------
# trimesh-backed world
# -----------------------------

class MeshScene:
    """
    Extrudes a TileMap's entity boxes into a 3D mesh and answers ray casts
    with trimesh on a horizontal slice at ear height. Tile and transform
    questions go to the underlying TileMap.
    """

    def __init__(self, tile_map: TileMap, wall_height: float = 2.5, ear_height: float = 1.2):
        if not 0.0 < ear_height < wall_height:
            raise ValueError("ear_height must lie between the floor and wall_height")
        self.tile_map = tile_map
        self.wall_height = float(wall_height)
        self.ear_height = float(ear_height)
        self.backend = _RAY_BACKEND
        self._build()

    def _build(self) -> None:
        tile_map = self.tile_map
        wall_height = self.wall_height
        meshes = []
        face_to_entity: List[int] = []
        c, s = math.cos(tile_map.angle), math.sin(tile_map.angle)
        rot = np.array([[c, -s, 0.0, 0.0], [s, c, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0], [0.0, 0.0, 0.0, 1.0]])
        for ent in tile_map.entities.values():
            if not ent.attached or ent.id == tile_map.listener:
                continue
            box = trimesh.creation.box(extents=(2 * ent.half_extents[0], 2 * ent.half_extents[1], wall_height))
            wx, wy = tile_map.entity_position(ent.id)
            tf = rot.copy()
            tf[:3, 3] = (wx, wy, wall_height / 2.0)
            box.apply_transform(tf)
            meshes.append(box)
            face_to_entity.extend([ent.id] * len(box.faces))

        self._face_to_entity = np.asarray(face_to_entity, dtype=np.int64)
        if meshes:
            self.mesh = trimesh.util.concatenate(meshes)
            self.ray = _RayIntersector(self.mesh)
        else:
            self.mesh = None
            self.ray = None
        self.revision = tile_map.revision
        logger.info("mesh scene built: %d entities, %d faces (%s)",
                    len(meshes), len(self._face_to_entity), self.backend)

    def cast(self, map_id, origin, translation, query_filter: QueryFilter) -> List[Hit]:
        if self.revision != self.tile_map.revision:
            self._build()
        if self.ray is None or map_id != self.tile_map.map_id:
            return []
        tr = np.asarray(translation, dtype=float)
        length = float(np.linalg.norm(tr))
        if length <= 0.0:
            return []
        d3 = np.array([tr[0] / length, tr[1] / length, 0.0])
        o3 = np.array([float(origin[0]), float(origin[1]), self.ear_height])

        locs, _, idx_tri = self.ray.intersects_location(o3.reshape(1, 3), d3.reshape(1, 3), multiple_hits=True)
        best: Dict[int, Tuple[float, np.ndarray, np.ndarray]] = {}
        attrs = self.tile_map.attributes
        for loc, tri in zip(locs, idx_tri):
            n_world = np.asarray(self.mesh.face_normals[int(tri)], dtype=float)
            # front faces only; exit faces and rays starting inside a box are skipped
            if float(np.dot(n_world, d3)) >= 0.0:
                continue
            dist = float(np.linalg.norm(np.asarray(loc) - o3))
            if dist > length + 1e-9:
                continue
            ent = int(self._face_to_entity[int(tri)])
            if ent in best and best[ent][0] <= dist:
                continue
            if not query_filter.accepts(ent, self.tile_map.entities[ent].layer, attrs):
                continue
            best[ent] = (dist, np.asarray(loc[:2], dtype=float), unit(n_world[:2]))

        hits = []
        for ent, (dist, point, n2) in sorted(best.items(), key=lambda kv: kv[1][0]):
            hits.append(Hit(
                entity=ent,
                point=point,
                local_normal=unit(rotate(n2, -self.tile_map.angle)),
                fraction=dist / length,
            ))
        return hits

    # ---- delegated transform / tile port ----

    def normal_to_world(self, entity, local_normal) -> np.ndarray:
        return self.tile_map.normal_to_world(entity, local_normal)

    def is_valid(self, entity) -> bool:
        return self.tile_map.is_valid(entity)

    def map_of(self, entity):
        return self.tile_map.map_of(entity)

    def entity_position(self, entity) -> np.ndarray:
        return self.tile_map.entity_position(entity)

    def tile_ref(self, map_id, position) -> Optional[TileRef]:
        return self.tile_map.tile_ref(map_id, position)

    def is_vacuum(self, tile: TileRef) -> bool:
        return self.tile_map.is_vacuum(tile)

    def is_rooved(self, tile: TileRef) -> Optional[bool]:
        return self.tile_map.is_rooved(tile)
