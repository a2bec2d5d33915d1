import random

import pytest

from app.models.domain import ChokeMode, HarmonicComponent, HarmonicProfile, HarmonicStatus
from app.services.harmonics import (
    HARMONIC_ORDERS,
    HarmonicEstimator,
    classify_best_harmonic,
    harmonic_band,
    initial_profile,
    sample_total_thd,
)


def test_choke_on_stays_in_regulation_band():
    est = HarmonicEstimator(rng=random.Random(42))
    for _ in range(1000):
        profile = est.tick(1.0, ChokeMode.ON)
        assert 4.5 <= profile.total_thd <= 5.0


def test_choke_off_covers_all_three_bands():
    rng = random.Random(7)
    draws = [sample_total_thd(rng, choke_on=False) for _ in range(2000)]

    assert all(4.0 <= d < 5.5 for d in draws)
    low = sum(d < 4.5 for d in draws) / len(draws)
    high = sum(d >= 5.0 for d in draws) / len(draws)
    assert 0.2 < low < 0.4
    assert 0.2 < high < 0.4


def test_tick_replaces_profile_wholesale():
    est = HarmonicEstimator(rng=random.Random(1))
    before = est.profile
    after = est.tick(2.0, ChokeMode.OFF)

    assert after is est.profile
    assert after is not before
    assert [h.order for h in after.harmonics] == list(HARMONIC_ORDERS)
    assert [h.phase for h in after.harmonics] == [h.phase for h in before.harmonics]


def test_tick_amplitude_and_thd_bands():
    est = HarmonicEstimator(rng=random.Random(3))
    for _ in range(200):
        p = est.tick(2.0, ChokeMode.OFF)
        for h in p.harmonics:
            assert 2.0 * 0.1 / h.order - 1e-12 <= h.amplitude <= 2.0 * 0.4 / h.order + 1e-12
            assert abs(h.thd - p.total_thd / 5) <= 0.1 + 1e-9


def test_zero_current_uses_default_base_amplitude():
    est = HarmonicEstimator(rng=random.Random(3))
    p = est.tick(0.0, ChokeMode.OFF)
    fundamental = p.harmonics[0]
    assert 0.05 <= fundamental.amplitude < 0.2


def test_drift_perturbs_previous_amplitudes():
    est = HarmonicEstimator(rng=random.Random(9))
    prev = [h.amplitude for h in est.profile.harmonics]
    p = est.drift(ChokeMode.ON)

    for before, h in zip(prev, p.harmonics):
        assert before * 0.9 - 1e-12 <= h.amplitude <= before * 1.1 + 1e-12
    assert 4.5 <= p.total_thd <= 5.0


def test_inactive_ticks_are_noops():
    est = HarmonicEstimator(rng=random.Random(5))
    frozen = est.profile

    assert est.tick(1.0, ChokeMode.OFF, active=False) is None
    assert est.drift(ChokeMode.OFF, active=False) is None
    assert est.profile is frozen


# ============================================================
# CLASSIFIER
# ============================================================

def _profile(total: float) -> HarmonicProfile:
    p = initial_profile()
    return HarmonicProfile(harmonics=p.harmonics, total_thd=total)


@pytest.mark.parametrize("choke,total,status,noise", [
    (ChokeMode.OFF, 4.0, HarmonicStatus.EXCELLENT, "Very Low Noise"),
    (ChokeMode.OFF, 4.5, HarmonicStatus.GOOD, "Low Noise"),
    (ChokeMode.OFF, 5.0, HarmonicStatus.GOOD, "Low Noise"),
    (ChokeMode.OFF, 6.0, HarmonicStatus.HIGH, "High Noise"),
    (ChokeMode.ON, 4.2, HarmonicStatus.BELOW_TARGET, "Too Low"),
    (ChokeMode.ON, 4.8, HarmonicStatus.OPTIMAL, "Controlled"),
    (ChokeMode.ON, 5.3, HarmonicStatus.ABOVE_TARGET, "High Noise"),
])
def test_classifier_table(choke, total, status, noise):
    best = classify_best_harmonic(_profile(total), choke)
    assert best.status == status
    assert best.noise_level == noise


def test_classifier_picks_lowest_thd_component():
    # initial profile: 9th harmonic has the lowest thd (0.9)
    best = classify_best_harmonic(initial_profile(), ChokeMode.OFF)
    assert best.order == 9
    assert best.thd == 0.9


def test_classifier_first_minimum_wins_ties():
    profile = HarmonicProfile(
        harmonics=[
            HarmonicComponent(order=1, amplitude=1.0, phase=0.0, thd=0.5),
            HarmonicComponent(order=3, amplitude=0.2, phase=45.0, thd=0.5),
        ],
        total_thd=1.0,
    )
    assert classify_best_harmonic(profile, ChokeMode.OFF).order == 1


@pytest.mark.parametrize("status_total,choke,indicator", [
    (4.0, ChokeMode.OFF, "green"),
    (4.8, ChokeMode.OFF, "yellow"),
    (6.0, ChokeMode.OFF, "red"),
    (4.8, ChokeMode.ON, "green"),
    (4.0, ChokeMode.ON, "yellow"),
    (5.5, ChokeMode.ON, "red"),
])
def test_noise_indicator(status_total, choke, indicator):
    assert classify_best_harmonic(_profile(status_total), choke).indicator == indicator


@pytest.mark.parametrize("thd,band", [(1.9, "low"), (2.0, "medium"), (4.0, "medium"), (4.1, "high")])
def test_harmonic_band(thd, band):
    assert harmonic_band(thd) == band
