#!/usr/bin/env python3
"""
roomprobe command line

Loads an ASCII tile map with one '@' listener, samples its surroundings for a
few passes and prints the smoothed magnitude and the reverb preset it maps to.
"""

import argparse
import json
import sys
from pathlib import Path

import numpy as np

from .aggregate import AcousticProbe
from .config import VARIANTS, ProbeSettings, get_variant
from .geometry import MeshScene, TileMap
from .logs import get_logger, setup_logging
from .materials import AttributeTable, builtin_library, load_library, merge_libraries
from .sampling import effective_directions

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roomprobe", description="Estimate room reverb around a listener")
    parser.add_argument("map", help="ASCII map file ('@' marks the listener)")
    parser.add_argument("--variant", default="acoustic", choices=sorted(VARIANTS), help="Tuning variant")
    parser.add_argument("--backend", default="tiles", choices=("tiles", "mesh"), help="Ray cast backend")
    parser.add_argument("--high-resolution", action="store_true", help="Cast 8 directions instead of 4")
    parser.add_argument("--bounces", type=int, default=6, help="Reflection count (clamped to 1..16)")
    parser.add_argument("--passes", type=int, default=1, help="Number of smoothed passes to run")
    parser.add_argument("--seed", type=int, help="Seed for the direction jitter")
    parser.add_argument("--materials", help="Extra material library (.csv or .json)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return parser


def load_world(path, backend: str = "tiles", materials=None):
    tile_map = TileMap.from_ascii(Path(path).read_text(encoding="utf-8"))
    if tile_map.listener is None:
        raise ValueError(f"{path}: map has no listener '@'")
    library = builtin_library()
    if materials:
        if not Path(materials).is_file():
            raise ValueError(f"{materials}: material library not found")
        library = merge_libraries(library, load_library(materials))
    tile_map.attributes = AttributeTable.from_tile_map(tile_map, library)
    world = MeshScene(tile_map) if backend == "mesh" else tile_map
    return tile_map, world


def run(args) -> list:
    variant = get_variant(args.variant)
    settings = ProbeSettings.from_mapping({
        "high_resolution": args.high_resolution,
        "reflection_count": args.bounces,
    })
    tile_map, world = load_world(args.map, args.backend, args.materials)
    probe = AcousticProbe(world, tile_map.attributes, variant, rng=np.random.default_rng(args.seed))
    directions = effective_directions(settings.high_resolution.value)

    logger.info("probing %s with %s variant, %d directions, %d bounces",
                args.map, variant.name, len(directions), settings.reflection_count.value)

    results = []
    for i in range(max(1, args.passes)):
        res = probe.try_compute(tile_map.listener, variant.max_range, settings.reflection_count.value, directions)
        if res is None:
            results.append({"pass": i + 1, "magnitude": None, "preset": None})
            continue
        results.append({
            "pass": i + 1,
            "magnitude": round(res.magnitude, 4),
            "preset": res.preset if res.magnitude > variant.min_magnitude else None,
            "avg_range": round(res.sample.avg_range, 4),
            "avg_absorption": round(res.sample.avg_absorption, 4),
            "escapes": res.sample.escapes,
            "avg_bounces": res.sample.avg_bounces,
        })
    return results


def main(argv=None) -> int:
    """Main command-line interface."""
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else "WARNING", log_file=args.log_file,
                  format_style="debug" if args.verbose else "simple")

    try:
        results = run(args)
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(results, indent=2))
        return 0

    for r in results:
        if r["magnitude"] is None:
            print(f"pass {r['pass']}: no data (listener in space or off grid)")
        else:
            print(f"pass {r['pass']}: magnitude {r['magnitude']:.2f} -> {r['preset'] or 'untreated'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
