# plotting.py
from __future__ import annotations

from typing import Optional, Sequence
import numpy as np
import matplotlib.pyplot as plt

from calibration import CalibrationResult, OperatingCharacteristics
from outcomes import ProbabilityModel
from posterior import PosteriorSummary
from trial import TrialResult

GROUP_COLORS = {0: "#E69F00", 1: "#56B4E9", None: "#009E73"}


def compact_style(ax):
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.grid(axis="y", linewidth=0.5, alpha=0.25)


def _tick_labels(n: int, labels: Optional[Sequence[str]]) -> list:
    if labels is None:
        return [f"D{i + 1}" for i in range(n)]
    return list(labels)


def plot_posterior_summary(
    summaries: Sequence[PosteriorSummary],
    n_doses: int,
    title: str = "Posterior mean and 95% CI by dose",
    labels: Optional[Sequence[str]] = None,
    figsize=(6.6, 3.0),
):
    """
    Adjusted posterior means with 95% intervals. Grouped summaries (by immune
    status) are drawn as one line per group.
    """
    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    groups = sorted({s.group for s in summaries}, key=lambda g: -1 if g is None else g)
    for g in groups:
        cells = sorted((s for s in summaries if s.group == g), key=lambda s: s.dose)
        x = np.array([c.dose for c in cells])
        y = np.array([c.adjusted_mean for c in cells], dtype=float)
        lo = np.array([c.ci_lower for c in cells], dtype=float)
        hi = np.array([c.ci_upper for c in cells], dtype=float)
        label = None if g is None else f"Y_I = {g}"
        color = GROUP_COLORS.get(g, None)
        # biviso means can sit just outside the interval of the clipped draws
        yerr = [np.clip(y - lo, 0, None), np.clip(hi - y, 0, None)]
        ax.errorbar(x, y, yerr=yerr, fmt="o-", capsize=3, linewidth=1, color=color, label=label)

    ax.set_title(title, fontsize=10)
    ax.set_xticks(np.arange(n_doses))
    ax.set_xticklabels(_tick_labels(n_doses, labels), fontsize=8)
    ax.set_ylabel("Probability", fontsize=9)
    ax.set_ylim(0, 1)
    compact_style(ax)
    if any(g is not None for g in groups):
        ax.legend(fontsize=8, frameon=False, loc="upper left")
    fig.tight_layout()
    return fig


def plot_allocation_by_stage(result: TrialResult, labels: Optional[Sequence[str]] = None, figsize=(6.6, 3.0)):
    n = result.config.n_doses
    stages = [h.stage for h in result.history]
    probs = np.array([h.allocation for h in result.history])  # (stage, dose)

    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    for j, lab in enumerate(_tick_labels(n, labels)):
        ax.plot(stages, probs[:, j], marker="o", linewidth=1, label=lab)
    ax.set_title("Allocation probabilities by stage", fontsize=10)
    ax.set_xticks(stages)
    ax.set_xlabel("Stage", fontsize=9)
    ax.set_ylabel("Probability", fontsize=9)
    ax.set_ylim(0, 1.05)
    compact_style(ax)
    ax.legend(fontsize=8, frameon=False, loc="upper right")
    fig.tight_layout()
    return fig


def plot_enrolment(result: TrialResult, labels: Optional[Sequence[str]] = None, figsize=(6.6, 3.0)):
    """Patients enrolled per dose, one bar per stage."""
    n = result.config.n_doses
    counts = np.array([h.counts for h in result.history])  # (stage, dose)
    n_stage = counts.shape[0]
    x = np.arange(n)
    w = 0.8 / max(n_stage, 1)

    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    for s in range(n_stage):
        ax.bar(x - 0.4 + w * (s + 0.5), counts[s], w, label=f"Stage {result.history[s].stage}")
    ax.set_title(f"Patients per dose and stage (N = {result.n_enrolled})", fontsize=10)
    ax.set_xticks(x)
    ax.set_xticklabels(_tick_labels(n, labels), fontsize=8)
    ax.set_ylabel("Patients", fontsize=9)
    compact_style(ax)
    ax.legend(fontsize=8, frameon=False, loc="upper right")
    fig.tight_layout()
    return fig


def plot_calibration_curve(cal: CalibrationResult, figsize=(6.6, 3.0)):
    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    ax.plot(cal.values, cal.rates, marker="o", linewidth=1.2, color="#2E86AB")
    ax.axhline(cal.target_rate, linestyle="--", linewidth=1, color="red")
    ax.axvline(cal.optimal_value, linestyle="--", linewidth=1, color="blue")
    ax.text(cal.optimal_value, ax.get_ylim()[1] * 0.92, f" {cal.parameter} = {cal.optimal_value:g}", fontsize=8)
    ax.set_title(f"Calibration of {cal.parameter} (target rate {cal.target_rate:.0%})", fontsize=10)
    ax.set_xlabel(cal.parameter, fontsize=9)
    ax.set_ylabel("Rate", fontsize=9)
    compact_style(ax)
    fig.tight_layout()
    return fig


def plot_true_scenario(model: ProbabilityModel, labels: Optional[Sequence[str]] = None, figsize=(6.6, 3.0)):
    """True marginal immune, toxicity and efficacy rates per dose."""
    marg = model.marginals()
    n = model.n_doses
    x = np.arange(n)

    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    for key, color in (("immune", "#009E73"), ("toxicity", "#D55E00"), ("efficacy", "#0072B2")):
        ax.plot(x, marg[key], marker="o", linewidth=1.2, color=color, label=key)
    ax.set_title("True marginal rates by dose", fontsize=10)
    ax.set_xticks(x)
    ax.set_xticklabels(_tick_labels(n, labels), fontsize=8)
    ax.set_ylabel("Probability", fontsize=9)
    ax.set_ylim(0, 1)
    compact_style(ax)
    ax.legend(fontsize=8, frameon=False, loc="upper left")
    fig.tight_layout()
    return fig


def plot_selection(oc: OperatingCharacteristics, labels: Optional[Sequence[str]] = None, figsize=(6.6, 3.0)):
    n = len(oc.selection_prob)
    x = np.arange(n)
    w = 0.38

    fig, ax = plt.subplots(figsize=figsize, dpi=160)
    ax.bar(x - w / 2, oc.selection_prob, w, label="P(selected)")
    ax2 = ax.twinx()
    ax2.bar(x + w / 2, oc.mean_n_per_dose, w, color="#E69F00", label="Mean patients")
    ax.set_title(f"Dose selection over {oc.n_trials} trials", fontsize=10)
    ax.set_xticks(x)
    ax.set_xticklabels(_tick_labels(n, labels), fontsize=8)
    ax.set_ylabel("Probability", fontsize=9)
    ax2.set_ylabel("Patients", fontsize=9)
    ax.set_ylim(0, max(float(np.max(oc.selection_prob)), 0.05) * 1.15)
    compact_style(ax)
    ax2.spines["top"].set_visible(False)
    h1, l1 = ax.get_legend_handles_labels()
    h2, l2 = ax2.get_legend_handles_labels()
    ax.legend(h1 + h2, l1 + l2, fontsize=8, frameon=False, loc="upper right")
    fig.tight_layout()
    return fig
