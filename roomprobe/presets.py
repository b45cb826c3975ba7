# roomprobe/presets.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class PresetThreshold:
    distance: float
    preset: str


class PresetTable:
    """
    Ascending magnitude thresholds -> preset ids.

    Built once and shared read-only; the classifier never sorts, so the
    ordering is checked here instead.
    """
    def __init__(self, thresholds: Iterable[PresetThreshold | Tuple[float, str]]):
        rows = tuple(t if isinstance(t, PresetThreshold) else PresetThreshold(float(t[0]), str(t[1]))
                     for t in thresholds)
        if not rows:
            raise ValueError("Preset table needs at least one threshold")
        for lo, hi in zip(rows, rows[1:]):
            if not hi.distance > lo.distance:
                raise ValueError(
                    f"Preset thresholds must be strictly ascending: {lo.distance} then {hi.distance}"
                )
        self.thresholds: Tuple[PresetThreshold, ...] = rows

    @property
    def minimum(self) -> float:
        return self.thresholds[0].distance

    @property
    def maximum(self) -> float:
        return self.thresholds[-1].distance

    @property
    def presets(self) -> Tuple[str, ...]:
        return tuple(t.preset for t in self.thresholds)

    def classify(self, magnitude: float) -> str:
        for t in self.thresholds:
            if t.distance >= magnitude:
                return t.preset
        # fallback to the largest preset
        return self.thresholds[-1].preset

    def threshold_for(self, magnitude: float) -> float:
        for t in self.thresholds:
            if t.distance >= magnitude:
                return t.distance
        return self.thresholds[-1].distance

    def __len__(self) -> int:
        return len(self.thresholds)

    def __iter__(self):
        return iter(self.thresholds)

    def __repr__(self) -> str:
        body = ", ".join(f"({t.distance:g}, {t.preset!r})" for t in self.thresholds)
        return f"PresetTable([{body}])"


# Station-scale reverb presets
REVERB_PRESETS = PresetTable([
    (10.0, "SpaceStationCupboard"),
    (13.0, "DustyRoom"),
    (15.0, "SpaceStationSmallRoom"),
    (18.0, "SpaceStationShortPassage"),
    (23.0, "SpaceStationMediumRoom"),
    (28.0, "SpaceStationHall"),
    (35.0, "SpaceStationLargeRoom"),
    (40.0, "Auditorium"),
    (45.0, "ConcertHall"),
    (70.0, "Hangar"),
])

# Coarser table for large open, rooved areas
ECHO_PRESETS = PresetTable([
    (18.0, "Hallway"),
    (30.0, "Auditorium"),
    (45.0, "ConcertHall"),
    (50.0, "Hangar"),
])


def classify(magnitude: float, table: PresetTable = REVERB_PRESETS) -> str:
    return table.classify(magnitude)
