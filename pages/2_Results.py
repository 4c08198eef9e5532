# pages/2_Results.py
import streamlit as st

from core import DEFAULTS, dose_labels, init_state
from plotting import (
    plot_allocation_by_stage,
    plot_enrolment,
    plot_posterior_summary,
    plot_selection,
)

st.set_page_config(page_title="Results", layout="wide")
init_state(st, DEFAULTS)

st.title("Results")
st.caption("Tip: open this page in a separate browser window and move it to your second monitor.")

result = st.session_state.get("last_result", None)
oc = st.session_state.get("last_replicates", None)

if result is None and oc is None:
    st.warning("No results found yet. Go back to the main page, run a trial, then return here.")
    st.page_link("app.py", label="Go to main page", icon="⬅️")
    st.stop()

# ============================================================
# Single trial
# ============================================================
if result is not None:
    labels = dose_labels(result.config)
    plain = [s.replace("\n", " ") for s in labels]
    snap = result.posterior

    st.subheader("Single trial")
    m1, m2, m3, m4 = st.columns(4, gap="large")
    m1.metric("Patients enrolled", f"{result.n_enrolled} / {result.config.max_sample_size}")
    m2.metric("Final dose", "none" if result.final_od is None else plain[result.final_od])
    m3.metric("PoC probability", f"{result.decision.poc_probability:.3f}")
    m4.metric("Stages run", f"{len(result.history)}")
    if result.terminated_early:
        st.error(f"Terminated early at stage {result.termination_stage}: {result.termination_reason}")
    else:
        st.info(result.decision.reason)

    c1, c2 = st.columns(2, gap="large")
    with c1:
        st.pyplot(plot_allocation_by_stage(result, labels=labels), clear_figure=True)
    with c2:
        st.pyplot(plot_enrolment(result, labels=labels), clear_figure=True)

    if snap is not None and snap.imm:
        c3, c4, c5 = st.columns(3, gap="large")
        with c3:
            st.pyplot(
                plot_posterior_summary(snap.imm, result.config.n_doses, title="Immune response", labels=labels),
                clear_figure=True,
            )
        with c4:
            st.pyplot(
                plot_posterior_summary(snap.tox, result.config.n_doses, title="Toxicity | Y_I", labels=labels),
                clear_figure=True,
            )
        with c5:
            st.pyplot(
                plot_posterior_summary(snap.eff, result.config.n_doses, title="Efficacy | Y_I", labels=labels),
                clear_figure=True,
            )

    with st.expander("Admissibility at the last stage", expanded=False):
        last = result.history[-1]
        st.dataframe(
            [
                {
                    "dose": plain[c.dose],
                    "P(tox < phi_T)": c.p_tox_safe,
                    "P(eff > phi_E)": c.p_eff_good,
                    "P(imm > phi_I)": c.p_imm_good,
                    "admissible": c.admissible,
                }
                for c in last.checks
            ],
            hide_index=True,
            use_container_width=True,
        )
        if result.decision.poc_by_dose:
            st.write(
                "PoC against best dose "
                f"{plain[result.decision.best_dose]}: "
                + ", ".join(f"{plain[i]} = {p:.3f}" for i, p in result.decision.poc_by_dose.items())
            )

    with st.expander("Allocation table", expanded=False):
        st.dataframe(result.allocation_table(), hide_index=True, use_container_width=True)

    if snap is not None:
        with st.expander("Posterior summaries (last stage)", expanded=False):
            st.dataframe(snap.summary_rows(), hide_index=True, use_container_width=True)

    with st.expander("Patient records", expanded=False):
        st.dataframe([vars(r) for r in result.records], hide_index=True, use_container_width=True)

# ============================================================
# Replicates
# ============================================================
if oc is not None:
    st.divider()
    st.subheader("Operating characteristics")
    m1, m2, m3, m4 = st.columns(4, gap="large")
    lo, hi = oc.early_termination_ci
    m1.metric("Early termination", f"{oc.early_termination_rate:.1%}", help=f"95% CI [{lo:.3f}, {hi:.3f}]")
    m2.metric("Completed", f"{oc.completion_rate:.1%}")
    lo, hi = oc.poc_ci
    m3.metric("PoC detected", f"{oc.poc_detection_rate:.1%}", help=f"95% CI [{lo:.3f}, {hi:.3f}]")
    m4.metric("Mean sample size", f"{oc.mean_sample_size:.1f}")

    levels = st.session_state.get("dose_levels", [])
    sel_labels = None
    if len(levels) == len(oc.selection_prob):
        sel_labels = [f"D{j + 1}\n{lvl}" for j, lvl in enumerate(levels)]

    c1, c2 = st.columns(2, gap="large")
    with c1:
        st.pyplot(plot_selection(oc, labels=sel_labels), clear_figure=True)
    with c2:
        st.markdown("**Early termination by stage**")
        if oc.termination_stages:
            st.dataframe(
                [{"stage": s, "trials": n} for s, n in oc.termination_stages.items()],
                hide_index=True,
            )
        else:
            st.write("No trial terminated early.")
        st.caption(f"PoC Monte Carlo standard error: {oc.poc_se:.4f}")
