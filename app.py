from __future__ import annotations

import hashlib, numpy as np, streamlit as st
import plotly.graph_objects as go

# Local package
from roomprobe import (
    # Config & helpers
    VARIANTS, ProbeSettings, get_variant, setup_logging,
    # World + materials
    TileMap, MeshScene, AttributeTable, builtin_library,
    # Pipeline
    AcousticProbe, AcousticsOrchestrator, AudioInstance, EffectLog, effective_directions,
    # Viz
    make_fig, add_listener, add_ray_paths,
)
from roomprobe.geometry import DEFAULT_LEGEND, _RAY_BACKEND

# ===== Streamlit setup =====
st.set_page_config(page_title="Room Probe", layout="wide")
setup_logging("INFO", format_style="simple")

DEFAULT_MAP = """\
###############
#.............#
#..T.......B..#
#.............#
#......@......D,,,,
#.............#
#..C.......K..#
#.............#
###############
"""

# ===== Style =====
st.markdown("""
<style>
:root{ --bg:#0d0f12; --panel:#12161c; --text:#e6edf3; --line:#2a2f36; --accent:#4bd0e0; }
html, body, [data-testid=stAppViewContainer], [data-testid=stHeader]{ background:var(--bg)!important; color:var(--text)!important; }
[data-testid=stSidebar]{ background:var(--panel)!important; color:var(--text)!important; box-shadow: inset 0 0 0 1px var(--line); }
.stButton>button{ background:#141a22; color:var(--text); border:1px solid var(--line); border-radius:8px; }
textarea{ font-family: monospace !important; }
</style>
""", unsafe_allow_html=True)


@st.cache_resource(show_spinner=False)
def _build_world(map_text: str, backend: str):
    tile_map = TileMap.from_ascii(map_text)
    tile_map.attributes = AttributeTable.from_tile_map(tile_map, builtin_library())
    world = MeshScene(tile_map) if backend == "mesh" else tile_map
    return tile_map, world


# ===== Main UI =====
def main():
    st.title("Room Probe - reverb preset estimation from bouncing rays")
    st.caption("Rays leave the listener '@', bounce off walls and soak up absorption from furniture. "
               "The smoothed result picks a reverb preset.")

    # --- Sidebar forms ---
    with st.sidebar:
        with st.form("map_form"):
            st.subheader("1) Map")
            map_text = st.text_area("ASCII layout", DEFAULT_MAP, height=260)
            st.caption("' ' space · '.' roofed floor · ',' open floor · '@' listener · "
                       + " · ".join(f"'{k}' {v.material}" for k, v in DEFAULT_LEGEND.items()))
            st.form_submit_button("Apply map", use_container_width=True)

        with st.form("probe_form"):
            st.subheader("2) Probe")
            variant_name = st.selectbox("Variant", sorted(VARIANTS), index=sorted(VARIANTS).index("acoustic"))
            backend = st.radio("Backend", ["tiles", "mesh"], index=0, horizontal=True)
            high_res = st.checkbox("High resolution (8 directions)", value=False)
            bounces = st.slider("Reflection count", 1, 16, 6)
            passes = st.slider("Passes (smoothing)", 1, 30, 5)
            seed = st.number_input("Random seed", 0, None, 0, 1)
            st.form_submit_button("Apply probe settings", use_container_width=True)

        with st.form("viz_form"):
            st.subheader("3) Visualization")
            show_tiles = st.checkbox("Shade space / unroofed tiles", value=True)
            max_rays = st.slider("Rays to draw", 0, 8, 8)
            st.form_submit_button("Apply viz", use_container_width=True)

        run = st.button("Run probe", type="primary", use_container_width=True)

    try:
        tile_map, world = _build_world(map_text, backend)
    except (ValueError, ImportError) as e:
        st.error(f"Failed to build world: {e}")
        return
    if tile_map.listener is None:
        st.info("Place a listener '@' on the map to begin.")
        return

    variant = get_variant(variant_name)
    settings = ProbeSettings.from_mapping({"high_resolution": high_res, "reflection_count": bounces})
    directions = effective_directions(settings.high_resolution.value)

    scene_tab, passes_tab, orch_tab = st.tabs(["Scene", "Passes", "Orchestrator"])

    if run:
        probe = AcousticProbe(world, tile_map.attributes, variant, rng=np.random.default_rng(int(seed)))
        history, last = [], None
        for i in range(int(passes)):
            res = probe.try_compute(tile_map.listener, variant.max_range, settings.reflection_count.value, directions)
            if res is None:
                history.append({"pass": i + 1, "magnitude": None, "preset": None})
                continue
            last = res
            history.append({
                "pass": i + 1,
                "raw range": round(res.sample.avg_range, 3),
                "magnitude": round(res.magnitude, 3),
                "preset": res.preset if res.magnitude > variant.min_magnitude else "untreated",
            })

        # one sound a few tiles from the listener, run through the orchestrator
        effects = EffectLog()
        orch = AcousticsOrchestrator(
            AcousticProbe(world, tile_map.attributes, variant, rng=np.random.default_rng(int(seed))),
            effects, settings)
        lpos = tile_map.entity_position(tile_map.listener)
        orch.add_instance(AudioInstance("footsteps", position=lpos + np.array([2.0, 0.0])))
        orch.add_instance(AudioInstance("radio", is_global=True))
        orch.attach_listener(tile_map.listener)
        orch.close()

        st.session_state.update({
            "history": history, "last": last, "effects": effects,
            "sig": hashlib.sha1(f"{map_text}|{variant_name}|{backend}|{high_res}|{bounces}|{seed}".encode()).hexdigest()[:12],
        })
        st.success(f"Probe complete · {len(history)} passes")

    history = st.session_state.get("history")
    last = st.session_state.get("last")

    with scene_tab:
        fig = make_fig(tile_map, show_tiles=show_tiles)
        add_listener(fig, tile_map.entity_position(tile_map.listener))
        if last is not None and max_rays:
            add_ray_paths(fig, last.rays, max_rays=int(max_rays))
        c_left, c_right = st.columns([3, 1], gap="large")
        with c_left:
            st.plotly_chart(fig, use_container_width=True)
            st.caption(f"Entities: {len(tile_map.entities)} · Backend: {backend}"
                       + (f" ({_RAY_BACKEND})" if backend == "mesh" else ""))
        with c_right:
            if last is None:
                st.info("Press **Run probe** to sample the room.")
            else:
                st.metric("Magnitude", f"{last.magnitude:.2f}")
                st.metric("Preset", last.preset if last.magnitude > variant.min_magnitude else "untreated")
                st.metric("Escapes", f"{last.sample.escapes:g}")
                st.metric("Absorption", f"{last.sample.avg_absorption:.3f}")

    with passes_tab:
        if not history:
            st.info("No passes yet.")
        else:
            mags = [h["magnitude"] for h in history]
            fig_m = go.Figure(go.Scatter(x=[h["pass"] for h in history], y=mags, mode="lines+markers",
                                         line=dict(width=2, color="#a8e6c7"), name="magnitude"))
            for t in variant.presets:
                fig_m.add_hline(y=t.distance, line=dict(width=1, dash="dot", color="rgba(200,120,255,0.5)"),
                                annotation_text=t.preset, annotation_font_color="#cfd8dc")
            fig_m.update_layout(title="Smoothed magnitude per pass", paper_bgcolor="#000", plot_bgcolor="#000",
                                xaxis=dict(color="#cfd8dc"), yaxis=dict(color="#cfd8dc"),
                                margin=dict(l=10, r=10, t=40, b=20), font=dict(color="#e6edf3"))
            st.plotly_chart(fig_m, use_container_width=True)
            st.dataframe(history, use_container_width=True)
            if last is not None:
                st.subheader("Rays (last pass)")
                st.dataframe([{
                    "ray": i, "range": round(r.total_range, 3), "absorption": round(r.total_absorption, 4),
                    "bounces": r.bounces, "escaped": bool(r.escapes),
                } for i, r in enumerate(last.rays)], use_container_width=True)

    with orch_tab:
        effects = st.session_state.get("effects")
        if effects is None:
            st.info("No orchestrator run yet.")
        else:
            st.write({"active presets": effects.active})
            st.dataframe([{"call": c, "instance": str(i), "preset": p} for c, i, p in effects.calls],
                         use_container_width=True)

    # --- Debug / verification ---
    with st.expander("Debug & verification"):
        st.write({
            "variant": variant.name,
            "escape_fraction": variant.escape_fraction,
            "falloff": variant.falloff,
            "max_range": variant.max_range,
            "directions": len(directions),
            "settings": settings.as_dict(),
            "attributed_entities": len(tile_map.attributes),
            "sig_digest": st.session_state.get("sig"),
        })


if __name__ == "__main__":
    main()
