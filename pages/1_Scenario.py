# pages/1_Scenario.py
from __future__ import annotations

import streamlit as st

from core import DEFAULTS, SCENARIO_WIDGET_PREFIX, init_state, reset_to_defaults
from outcomes import model_from_mapping
from plotting import plot_true_scenario

st.set_page_config(page_title="Scenario", layout="wide")
init_state(st, DEFAULTS)

st.markdown(
    """
    <style>
      .block-container { padding-top: 1.2rem; padding-bottom: 1.5rem; }
      h1, h2, h3 { margin-top: 0.2rem; }
    </style>
    """,
    unsafe_allow_html=True,
)

P = SCENARIO_WIDGET_PREFIX
FIELDS = ("I", "T0", "T1", "E0", "E1")


# --- Helpers ---
def _widget_key(field: str, j: int) -> str:
    return f"{P}{field}_{j}"


def _values_from_lists(j: int) -> dict:
    ss = st.session_state
    return {
        "I": float(ss["p_YI"][j]),
        "T0": float(ss["p_YT_given_I"][j][0]),
        "T1": float(ss["p_YT_given_I"][j][1]),
        "E0": float(ss["p_YE_given_I"][j][0]),
        "E1": float(ss["p_YE_given_I"][j][1]),
    }


def _seed_widgets() -> None:
    """Widget keys mirror the scenario lists; create any that are missing."""
    ss = st.session_state
    if f"{P}dose_levels" not in ss:
        ss[f"{P}dose_levels"] = ", ".join(str(v) for v in ss["dose_levels"])
    for j in range(len(ss["p_YI"])):
        vals = _values_from_lists(j)
        for f in FIELDS:
            if _widget_key(f, j) not in ss:
                ss[_widget_key(f, j)] = vals[f]


def _sync_lists_from_widgets() -> None:
    ss = st.session_state
    J = len(ss["p_YI"])
    ss["p_YI"] = [float(ss[_widget_key("I", j)]) for j in range(J)]
    ss["p_YT_given_I"] = [[float(ss[_widget_key("T0", j)]), float(ss[_widget_key("T1", j)])] for j in range(J)]
    ss["p_YE_given_I"] = [[float(ss[_widget_key("E0", j)]), float(ss[_widget_key("E1", j)])] for j in range(J)]


def _resize_doses() -> None:
    """Apply an edited dose-level list; new doses copy the highest existing dose."""
    ss = st.session_state
    raw = [s.strip() for s in str(ss[f"{P}dose_levels"]).split(",") if s.strip()]
    if not raw:
        ss[f"{P}dose_levels"] = ", ".join(str(v) for v in ss["dose_levels"])
        return
    levels = []
    for s in raw:
        try:
            levels.append(float(s) if "." in s else int(s))
        except ValueError:
            levels.append(s)

    _sync_lists_from_widgets()
    old_J, new_J = len(ss["p_YI"]), len(levels)
    for j in range(new_J, old_J):
        for f in FIELDS:
            ss.pop(_widget_key(f, j), None)
    pad = max(new_J - old_J, 0)
    ss["p_YI"] = (ss["p_YI"] + [ss["p_YI"][-1]] * pad)[:new_J]
    ss["p_YT_given_I"] = (ss["p_YT_given_I"] + [list(ss["p_YT_given_I"][-1])] * pad)[:new_J]
    ss["p_YE_given_I"] = (ss["p_YE_given_I"] + [list(ss["p_YE_given_I"][-1])] * pad)[:new_J]
    ss["dose_levels"] = levels


_seed_widgets()

# Reset BEFORE widgets.
c1, c2, _ = st.columns([1, 1, 3])
with c1:
    if st.button("Reset to defaults", use_container_width=True):
        reset_to_defaults(st, DEFAULTS)
with c2:
    st.caption("True outcome probabilities used to simulate patients.")

st.title("True scenario")

st.text_input(
    "Dose levels (comma separated)",
    key=f"{P}dose_levels",
    on_change=_resize_doses,
    help="Labels of the dose levels, lowest first. Adding a level copies the highest dose.",
)

J = len(st.session_state["p_YI"])
cols = st.columns(J, gap="medium")
for j, col in enumerate(cols):
    with col:
        st.markdown(f"**D{j + 1} ({st.session_state['dose_levels'][j]})**")
        st.number_input("P(I=1)", min_value=0.0, max_value=1.0, step=0.05,
                        key=_widget_key("I", j), on_change=_sync_lists_from_widgets)
        st.number_input("P(T=1 | I=0)", min_value=0.0, max_value=1.0, step=0.05,
                        key=_widget_key("T0", j), on_change=_sync_lists_from_widgets)
        st.number_input("P(T=1 | I=1)", min_value=0.0, max_value=1.0, step=0.05,
                        key=_widget_key("T1", j), on_change=_sync_lists_from_widgets)
        st.number_input("P(E=1 | I=0)", min_value=0.0, max_value=1.0, step=0.05,
                        key=_widget_key("E0", j), on_change=_sync_lists_from_widgets)
        st.number_input("P(E=1 | I=1)", min_value=0.0, max_value=1.0, step=0.05,
                        key=_widget_key("E1", j), on_change=_sync_lists_from_widgets)

r1, r2, _ = st.columns([1, 1, 2])
with r1:
    st.number_input("Gumbel association rho0 (I=0)", min_value=-5.0, max_value=5.0, step=0.1, key="rho0")
with r2:
    st.number_input("Gumbel association rho1 (I=1)", min_value=-5.0, max_value=5.0, step=0.1, key="rho1")

st.divider()

try:
    model = model_from_mapping(st.session_state)
except ValueError as exc:
    st.error(f"Scenario is not valid: {exc}")
    st.stop()

left, right = st.columns([1.3, 1], gap="large")
with left:
    labels = [f"D{j + 1}\n{lvl}" for j, lvl in enumerate(st.session_state["dose_levels"])]
    st.pyplot(plot_true_scenario(model, labels=labels), clear_figure=True)
with right:
    marg = model.marginals()
    st.dataframe(
        [
            {
                "dose": labels[j].replace("\n", " "),
                "immune": round(float(marg["immune"][j]), 3),
                "toxicity": round(float(marg["toxicity"][j]), 3),
                "efficacy": round(float(marg["efficacy"][j]), 3),
            }
            for j in range(model.n_doses)
        ],
        hide_index=True,
        use_container_width=True,
    )
