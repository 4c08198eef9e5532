# pages/3_Calibration.py
from __future__ import annotations

import streamlit as st

from calibration import NULL_SCENARIOS, calibrate_c_poc, calibrate_early_termination, null_scenario
from core import DEFAULTS, config_from_mapping, init_state
from outcomes import unfavorable_scenario
from plotting import plot_calibration_curve

st.set_page_config(page_title="Calibration", layout="wide")
init_state(st, DEFAULTS)

st.title("Calibration")
st.caption(
    "Sweeps one threshold at a time using the design settings from the main page. "
    "Each candidate runs its own batch of simulated trials, so this can take a while."
)

try:
    config = config_from_mapping(st.session_state)
except ValueError as exc:
    st.error(f"Invalid settings: {exc}")
    st.stop()

c1, c2, c3 = st.columns([1.1, 1.1, 1.1], gap="large")
with c1:
    st.number_input("Trials per candidate", min_value=10, max_value=5000, step=10, key="calib_n_trials")
with c2:
    st.number_input(
        "Target PoC rate (null scenario)",
        min_value=0.0,
        max_value=1.0,
        step=0.01,
        key="calib_target_poc",
        help="False-positive PoC rate to aim for when every dose is identical.",
    )
    st.selectbox(
        "Null scenario",
        options=list(NULL_SCENARIOS),
        key="calib_null_scenario",
        help="null_flat: identical doses at the efficacy target. flat: identical doses at the immune and efficacy lower bounds.",
    )
with c3:
    st.number_input(
        "Target early-termination rate",
        min_value=0.0,
        max_value=1.0,
        step=0.05,
        key="calib_target_et",
        help="Termination rate to aim for when every dose is unsafe and inactive.",
    )
    st.selectbox("Threshold to calibrate", options=["c_T", "c_E", "c_I"], key="calib_threshold")

n_trials = int(st.session_state["calib_n_trials"])
b1, b2, _ = st.columns([1, 1, 2])
with b1:
    if st.button("Calibrate c_poc", type="primary", use_container_width=True):
        with st.spinner("Sweeping c_poc under the null scenario..."):
            cal = calibrate_c_poc(
                config,
                null_scenario(str(st.session_state["calib_null_scenario"]), config.n_doses),
                n_trials=n_trials,
                target_rate=float(st.session_state["calib_target_poc"]),
            )
        st.session_state["last_calibration"] = cal
with b2:
    if st.button("Calibrate early termination", use_container_width=True):
        with st.spinner("Sweeping the threshold under the unfavourable scenario..."):
            cal = calibrate_early_termination(
                config,
                threshold=str(st.session_state["calib_threshold"]),
                model=unfavorable_scenario(config.n_doses),
                n_trials=n_trials,
                target_rate=float(st.session_state["calib_target_et"]),
            )
        st.session_state["last_calibration"] = cal

cal = st.session_state.get("last_calibration", None)
if cal is None:
    st.info("No calibration run yet.")
    st.stop()

st.divider()
left, right = st.columns([1.3, 1], gap="large")
with left:
    st.pyplot(plot_calibration_curve(cal), clear_figure=True)
with right:
    st.metric(f"Chosen {cal.parameter}", f"{cal.optimal_value:g}", help=f"Achieved rate {cal.achieved_rate:.3f}")
    rows = []
    for value, oc in zip(cal.values, cal.characteristics):
        rate = oc.poc_detection_rate if cal.parameter == "c_poc" else oc.early_termination_rate
        lo, hi = oc.poc_ci if cal.parameter == "c_poc" else oc.early_termination_ci
        rows.append(
            {
                cal.parameter: value,
                "rate": round(rate, 3),
                "95% CI": f"[{lo:.3f}, {hi:.3f}]",
                "completed": round(oc.completion_rate, 3),
                "mean N": round(oc.mean_sample_size, 1),
            }
        )
    st.dataframe(rows, hide_index=True, use_container_width=True)
