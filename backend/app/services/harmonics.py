"""
harmonics.py

Purpose:
  Synthetic harmonic-distortion estimator for the live feed, plus the
  "best harmonic" classifier shown next to the THD gauge.

Math/Sim:
  - **Total THD**: drawn from a choke-dependent band. Choke OFF spreads over
    4.0-5.5 % (30/40/30 split across the three 0.5 % bands); choke ON stays
    in the 4.5-5.0 % regulation band.
  - **Per-order amplitude**: `base * U[0.1, 0.4) / order` on sample ticks,
    `previous * U[0.9, 1.1)` on idle drift ticks.
  - **Per-order THD**: `total / 5 + U[-0.1, 0.1)`.

This is a placeholder estimator, not spectral analysis. The RNG is injected
so tests can pin the sequence.
"""
from __future__ import annotations

import random
from typing import List, Optional, Tuple

from app.models.domain import (
    BestHarmonic,
    ChokeMode,
    HarmonicComponent,
    HarmonicProfile,
    HarmonicStatus,
)

HARMONIC_ORDERS: Tuple[int, ...] = (1, 3, 5, 7, 9)

# Lower/upper edges of the classification bands (percent)
THD_LOW_PCT = 4.5
THD_HIGH_PCT = 5.0

_DEFAULT_BASE_AMPLITUDE = 0.5


def initial_profile() -> HarmonicProfile:
    return HarmonicProfile(
        harmonics=[
            HarmonicComponent(order=1, amplitude=0.95, phase=0.0, thd=1.2),
            HarmonicComponent(order=3, amplitude=0.15, phase=45.0, thd=2.1),
            HarmonicComponent(order=5, amplitude=0.08, phase=90.0, thd=3.5),
            HarmonicComponent(order=7, amplitude=0.05, phase=135.0, thd=1.8),
            HarmonicComponent(order=9, amplitude=0.03, phase=180.0, thd=0.9),
        ],
        total_thd=2.5,
    )


def sample_total_thd(rng: random.Random, choke_on: bool) -> float:
    if choke_on:
        return rng.random() * 0.5 + 4.5

    r = rng.random()
    if r < 0.3:
        return rng.random() * 0.5 + 4.0
    if r < 0.7:
        return rng.random() * 0.5 + 4.5
    return rng.random() * 0.5 + 5.0


class HarmonicEstimator:
    """
    Holds the last HarmonicProfile and replaces it wholesale on each tick.
    Callers pass `active=False` while the feed is stale; the tick then
    returns None and the profile stays frozen.
    """

    def __init__(self, rng: Optional[random.Random] = None, profile: Optional[HarmonicProfile] = None):
        self._rng = rng or random.Random()
        self.profile = profile or initial_profile()

    def _component_thd(self, total_thd: float, count: int) -> float:
        return total_thd / count + (self._rng.random() - 0.5) * 0.2

    def tick(self, base_amplitude: float, choke_mode: ChokeMode, active: bool = True) -> Optional[HarmonicProfile]:
        if not active:
            return None

        base = base_amplitude or _DEFAULT_BASE_AMPLITUDE
        total = sample_total_thd(self._rng, choke_mode == ChokeMode.ON)
        prev = self.profile.harmonics
        harmonics: List[HarmonicComponent] = []
        for h in prev:
            harmonics.append(
                HarmonicComponent(
                    order=h.order,
                    # amplitude must be non-negative
                    amplitude=abs(base) * (self._rng.random() * 0.3 + 0.1) / h.order,
                    phase=h.phase,
                    thd=self._component_thd(total, len(prev)),
                )
            )

        self.profile = HarmonicProfile(harmonics=harmonics, total_thd=total)
        return self.profile

    def drift(self, choke_mode: ChokeMode, active: bool = True) -> Optional[HarmonicProfile]:
        """Idle-timer variant: perturbs the previous amplitudes by +/-10%."""
        if not active:
            return None

        total = sample_total_thd(self._rng, choke_mode == ChokeMode.ON)
        prev = self.profile.harmonics
        harmonics = [
            HarmonicComponent(
                order=h.order,
                amplitude=h.amplitude * (0.9 + self._rng.random() * 0.2),
                phase=h.phase,
                thd=self._component_thd(total, len(prev)),
            )
            for h in prev
        ]

        self.profile = HarmonicProfile(harmonics=harmonics, total_thd=total)
        return self.profile


# ============================================================
# BEST-HARMONIC CLASSIFIER
# ============================================================

_INDICATOR = {
    HarmonicStatus.EXCELLENT: "green",
    HarmonicStatus.OPTIMAL: "green",
    HarmonicStatus.HIGH: "red",
    HarmonicStatus.ABOVE_TARGET: "red",
}


def classify_status(total_thd: float, choke_mode: ChokeMode) -> Tuple[HarmonicStatus, str]:
    if choke_mode == ChokeMode.ON:
        if total_thd < THD_LOW_PCT:
            return HarmonicStatus.BELOW_TARGET, "Too Low"
        if total_thd <= THD_HIGH_PCT:
            return HarmonicStatus.OPTIMAL, "Controlled"
        return HarmonicStatus.ABOVE_TARGET, "High Noise"

    if total_thd < THD_LOW_PCT:
        return HarmonicStatus.EXCELLENT, "Very Low Noise"
    if total_thd <= THD_HIGH_PCT:
        return HarmonicStatus.GOOD, "Low Noise"
    return HarmonicStatus.HIGH, "High Noise"


def classify_best_harmonic(profile: HarmonicProfile, choke_mode: ChokeMode) -> BestHarmonic:
    # First minimum wins on ties
    best = profile.harmonics[0]
    for h in profile.harmonics[1:]:
        if h.thd < best.thd:
            best = h

    status, noise = classify_status(profile.total_thd, choke_mode)
    return BestHarmonic(
        order=best.order,
        amplitude=best.amplitude,
        phase=best.phase,
        thd=best.thd,
        status=status,
        noise_level=noise,
        indicator=_INDICATOR.get(status, "yellow"),
    )


def harmonic_band(thd: float) -> str:
    """Bar colour band for one harmonic order."""
    if thd < 2:
        return "low"
    if thd > 4:
        return "high"
    return "medium"
