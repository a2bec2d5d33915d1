"""
control_policy.py

Purpose:
  Closed-loop corrections written back to the device on every live sample.

Rules (evaluated independently, both may fire):
  1. **Current clamp**: line voltage above the limit forces the target current.
  2. **Relay mirror**: the relay must follow the (normalised) choke flag.

The function is pure: it never talks to the channel. Dispatch is the pipeline's job.
"""
from __future__ import annotations

from typing import Tuple

from app.models.domain import ControlDirective, RawSample, normalize_choke

DEFAULT_VOLTAGE_LIMIT_V = 200.0
DEFAULT_TARGET_CURRENT_A = 1.5


def evaluate_control(
    sample: RawSample,
    voltage_limit_v: float = DEFAULT_VOLTAGE_LIMIT_V,
    target_current_a: float = DEFAULT_TARGET_CURRENT_A,
) -> Tuple[ControlDirective, bool]:
    """
    Returns: (directive, issued)
    """
    directive = ControlDirective()

    if sample.voltage > voltage_limit_v and sample.current != target_current_a:
        directive.current = float(target_current_a)

    choke = normalize_choke(sample.choke_mode.value)
    if sample.relay != choke:
        directive.relay = choke

    return directive, not directive.is_empty()


def apply_directive(sample: RawSample, directive: ControlDirective) -> RawSample:
    """The sample as it will look once the device has applied the directive."""
    if directive.is_empty():
        return sample
    changes = {}
    if directive.current is not None:
        changes["current"] = directive.current
    if directive.relay is not None:
        changes["relay"] = directive.relay
    return sample.model_copy(update=changes)
