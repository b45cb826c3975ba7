# roomprobe/viz.py
from __future__ import annotations
from typing import Iterable, Optional, Sequence
import numpy as np
import plotly.graph_objects as go

from .config import Layer
from .geometry import SPACE, TileMap


# -----------------------------
# Colors / styles
# -----------------------------

WALL_GREEN = "rgb(0,255,128)"
FURNITURE_GREEN = "rgba(0,255,128,0.45)"
GRID_C = "rgba(120,160,130,0.18)"
OPEN_FLOOR_C = "rgba(255,200,60,0.12)"
SPACE_C = "rgba(60,60,90,0.35)"
PURPLE = "rgb(200,120,255)"
RAY_NEON_ORANGE = "rgba(255,120,0,1.0)"
RAY_ESCAPED = "rgba(75,208,224,0.9)"


def _box_outline(tile_map: TileMap, center: np.ndarray, half: np.ndarray):
    corners = np.array([
        [-half[0], -half[1]], [half[0], -half[1]], [half[0], half[1]], [-half[0], half[1]], [-half[0], -half[1]],
    ]) + center
    world = np.array([tile_map.to_world(c) for c in corners])
    return list(world[:, 0]) + [None], list(world[:, 1]) + [None]


def _tile_cells(tile_map: TileMap, mask: np.ndarray):
    xs, ys = [], []
    for iy, ix in zip(*np.nonzero(mask)):
        bx, by = _box_outline(tile_map, np.array([ix + 0.5, iy + 0.5]), np.array([0.5, 0.5]))
        xs += bx
        ys += by
    return xs, ys


# -----------------------------
# Plotly scene
# -----------------------------

def make_fig(tile_map: TileMap, show_tiles: bool = True) -> "go.Figure":
    fig = go.Figure()

    if show_tiles:
        space = tile_map.tiles == SPACE
        xs, ys = _tile_cells(tile_map, space)
        if xs:
            fig.add_trace(go.Scatter(x=xs, y=ys, mode="lines", fill="toself", fillcolor=SPACE_C,
                                     line=dict(width=0), name="Space", hoverinfo="skip"))
        if tile_map.roofed is not None:
            xs, ys = _tile_cells(tile_map, (~tile_map.roofed) & ~space)
            if xs:
                fig.add_trace(go.Scatter(x=xs, y=ys, mode="lines", fill="toself", fillcolor=OPEN_FLOOR_C,
                                         line=dict(width=0), name="No roof", hoverinfo="skip"))

    # Walls and furniture
    wall_x, wall_y, furn_x, furn_y = [], [], [], []
    for ent in tile_map.entities.values():
        if not ent.attached or ent.id == tile_map.listener:
            continue
        bx, by = _box_outline(tile_map, ent.center, ent.half_extents)
        if ent.layer & int(Layer.IMPASSABLE):
            wall_x += bx
            wall_y += by
        else:
            furn_x += bx
            furn_y += by
    if wall_x:
        fig.add_trace(go.Scatter(x=wall_x, y=wall_y, mode="lines", line=dict(width=2, color=WALL_GREEN),
                                 name="Walls"))
    if furn_x:
        fig.add_trace(go.Scatter(x=furn_x, y=furn_y, mode="lines", line=dict(width=1, color=FURNITURE_GREEN),
                                 name="Furniture"))

    fig.update_layout(
        paper_bgcolor="#000", plot_bgcolor="#000",
        xaxis=dict(gridcolor=GRID_C, zerolinecolor=GRID_C, color="#cfd8dc"),
        yaxis=dict(gridcolor=GRID_C, zerolinecolor=GRID_C, color="#cfd8dc", scaleanchor="x", scaleratio=1),
        margin=dict(l=0, r=0, b=0, t=30),
        legend=dict(font=dict(color="#e6edf3")),
    )
    return fig


def add_listener(fig: "go.Figure", position: Sequence[float], label: str = "Listener"):
    fig.add_trace(go.Scatter(
        x=[float(position[0])], y=[float(position[1])],
        mode="markers",
        marker=dict(size=10, color="rgb(255,255,255)", line=dict(width=2, color="rgb(255,32,64)")),
        name=label,
    ))


def add_ray_paths(fig: "go.Figure", rays: Iterable, max_rays: Optional[int] = None):
    """One polyline per RayStats; escaped rays are drawn in a different color."""
    bounced_x, bounced_y, esc_x, esc_y = [], [], [], []
    for i, ray in enumerate(rays):
        if max_rays is not None and i >= max_rays:
            break
        pts = np.asarray(ray.path, dtype=float).reshape(-1, 2)
        if len(pts) < 2:
            continue
        xs, ys = (esc_x, esc_y) if ray.escapes else (bounced_x, bounced_y)
        xs += list(pts[:, 0]) + [None]
        ys += list(pts[:, 1]) + [None]
    if bounced_x:
        fig.add_trace(go.Scatter(x=bounced_x, y=bounced_y, mode="lines+markers",
                                 line=dict(width=2, color=RAY_NEON_ORANGE), marker=dict(size=4),
                                 name="Rays"))
    if esc_x:
        fig.add_trace(go.Scatter(x=esc_x, y=esc_y, mode="lines+markers",
                                 line=dict(width=2, color=RAY_ESCAPED, dash="dot"), marker=dict(size=4),
                                 name="Escaped rays"))
