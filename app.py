# app.py
from __future__ import annotations

import logging

import numpy as np
import streamlit as st

from calibration import run_replicates
from core import (
    DEFAULTS,
    config_from_mapping,
    default_utility_table,
    dose_labels,
    init_state,
    reset_to_defaults,
)
from outcomes import model_from_mapping
from trial import run_trial

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

st.set_page_config(page_title="Immunotherapy dose finding", layout="wide")
init_state(st, DEFAULTS)

st.markdown(
    """
    <style>
    .block-container { padding-top: 1.2rem; padding-bottom: 0.8rem; }
    </style>
    """,
    unsafe_allow_html=True,
)

# Put reset BEFORE widgets so it never triggers "set after widget" issues.
c1, c2, _ = st.columns([1, 1, 3])
with c1:
    if st.button("Reset to defaults", use_container_width=True):
        reset_to_defaults(st, DEFAULTS)
with c2:
    st.caption("Edit the true scenario on the Scenario page.")

st.title("Multi-stage immunotherapy dose finding")

colA, colB, colC = st.columns([1.2, 1.2, 1.2], gap="large")

with colA:
    st.subheader("Design")
    st.number_input("Number of stages", min_value=1, max_value=20, step=1, key="n_stages")
    st.number_input(
        "Cohort size per stage",
        min_value=1,
        max_value=200,
        step=1,
        key="cohort_size",
        help="Patients enrolled in every stage. Stage 1 splits them equally across doses.",
    )
    st.number_input(
        "Posterior draws",
        min_value=100,
        max_value=20000,
        step=100,
        key="n_sims",
        help="Monte Carlo draws per Beta posterior.",
    )
    st.number_input("Random seed", min_value=0, max_value=10_000_000, step=1, key="seed")
    st.checkbox(
        "Early termination",
        key="enable_early_termination",
        help="Stop the trial when no dose is admissible after a stage.",
    )
    st.selectbox("Toxicity monotonicity", options=["biviso", "pava"], key="tox_constraint")
    st.selectbox("Efficacy monotonicity", options=["biviso", "pava"], key="eff_constraint")

with colB:
    st.subheader("Admissibility")
    st.number_input("Toxicity limit phi_T", min_value=0.01, max_value=0.99, step=0.01, key="phi_T")
    st.number_input(
        "Credibility c_T",
        min_value=0.0,
        max_value=1.0,
        step=0.01,
        key="c_T",
        help="Dose is safe when P(toxicity < phi_T) >= c_T.",
    )
    st.number_input("Efficacy floor phi_E", min_value=0.01, max_value=0.99, step=0.01, key="phi_E")
    st.number_input("Credibility c_E", min_value=0.0, max_value=1.0, step=0.01, key="c_E")
    st.number_input("Immune floor phi_I", min_value=0.01, max_value=0.99, step=0.01, key="phi_I")
    st.number_input("Credibility c_I", min_value=0.0, max_value=1.0, step=0.01, key="c_I")

with colC:
    st.subheader("Proof of concept")
    st.number_input(
        "PoC threshold c_poc",
        min_value=0.0,
        max_value=1.0,
        step=0.01,
        key="c_poc",
        help="A dose passes PoC when P(pi_I(dose) < delta_poc * pi_I(best)) >= c_poc.",
    )
    st.number_input("PoC ratio delta_poc", min_value=0.01, max_value=2.0, step=0.05, key="delta_poc")
    st.number_input("Prior alpha", min_value=0.01, max_value=50.0, step=0.5, key="prior_alpha")
    st.number_input("Prior beta", min_value=0.01, max_value=50.0, step=0.5, key="prior_beta")
    st.number_input(
        "Replicate trials",
        min_value=10,
        max_value=5000,
        step=10,
        key="n_trials",
        help="Number of simulated trials for operating characteristics.",
    )

with st.expander("Utility table U[T, E, I]", expanded=False):
    u = np.asarray(st.session_state.get("utility_table", default_utility_table()), dtype=float)
    st.table(
        [
            {"T": t, "E": e, "U (I=0)": u[t, e, 0], "U (I=1)": u[t, e, 1]}
            for t in (0, 1)
            for e in (0, 1)
        ]
    )

st.divider()


def _build():
    try:
        return config_from_mapping(st.session_state), model_from_mapping(st.session_state)
    except ValueError as exc:
        st.error(f"Invalid settings: {exc}")
        st.stop()


run1, run2, _ = st.columns([1, 1, 2])
with run1:
    if st.button("Run single trial", type="primary", use_container_width=True):
        cfg, model = _build()
        with st.spinner("Running trial..."):
            st.session_state["last_result"] = run_trial(cfg, model, seed=int(st.session_state["seed"]))
with run2:
    if st.button("Run replicates", use_container_width=True):
        cfg, model = _build()
        with st.spinner(f"Running {int(st.session_state['n_trials'])} trials..."):
            st.session_state["last_replicates"] = run_replicates(
                cfg, model, int(st.session_state["n_trials"]), base_seed=int(st.session_state["seed"])
            )

result = st.session_state.get("last_result")
if result is not None:
    labels = [s.replace("\n", " ") for s in dose_labels(result.config)]
    st.subheader("Last single trial")
    m1, m2, m3, m4 = st.columns(4, gap="large")
    m1.metric("Patients enrolled", f"{result.n_enrolled}")
    m2.metric("Final dose", "none" if result.final_od is None else labels[result.final_od])
    m3.metric("PoC established", "yes" if result.poc_validated else "no")
    m4.metric(
        "Terminated early",
        f"stage {result.termination_stage}" if result.terminated_early else "no",
    )
    st.caption(result.decision.reason)

oc = st.session_state.get("last_replicates")
if oc is not None:
    st.subheader("Last replicate run")
    m1, m2, m3, m4 = st.columns(4, gap="large")
    m1.metric("Early termination", f"{oc.early_termination_rate:.1%}")
    m2.metric("Completed", f"{oc.completion_rate:.1%}")
    m3.metric("PoC detected", f"{oc.poc_detection_rate:.1%}", help=f"MC standard error {oc.poc_se:.3f}")
    m4.metric("Mean sample size", f"{oc.mean_sample_size:.1f}")

if result is not None or oc is not None:
    st.page_link("pages/2_Results.py", label="Open results", icon="📊")
