from __future__ import annotations

import os

from pydantic import BaseModel

_TRUE = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in _TRUE


def env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return float(val.strip())
    except Exception:
        return default


def env_str(name: str, default: str) -> str:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


class PipelineSettings(BaseModel):
    # Buffer capacities
    window_capacity: int = 20
    thd_history_capacity: int = 50
    alert_capacity: int = 10
    history_limit: int = 5

    # Liveness / timers
    liveness_timeout_ms: int = 5000
    liveness_check_interval_s: float = 1.0
    drift_interval_s: float = 2.0

    # Control policy
    control_voltage_limit_v: float = 200.0
    control_target_current_a: float = 1.5

    # Alert rules
    overload_threshold_w: float = 0.005
    unbalanced_tolerance: float = 0.1
    high_thd_pct: float = 5.0

    # Store paths
    live_path: str = "2_AC_Power_Facter/1_AC_Power_Choke"
    dc_path: str = "2_AC_Power_Facter"
    history_path: str = "2_AC_Power_Facter/history"

    # Demo feed
    demo_mode: bool = False
    deterministic: bool = False
    seed: int = 7
    demo_feed_interval_s: float = 1.0


def load_settings() -> PipelineSettings:
    demo_mode = env_flag("DEMO_MODE", False)
    return PipelineSettings(
        window_capacity=env_int("WINDOW_CAPACITY", 20),
        thd_history_capacity=env_int("THD_HISTORY_CAPACITY", 50),
        alert_capacity=env_int("ALERT_CAPACITY", 10),
        history_limit=env_int("HISTORY_LIMIT", 5),
        liveness_timeout_ms=env_int("LIVENESS_TIMEOUT_MS", 5000),
        liveness_check_interval_s=env_float("LIVENESS_CHECK_INTERVAL_S", 1.0),
        drift_interval_s=env_float("DRIFT_INTERVAL_S", 2.0),
        control_voltage_limit_v=env_float("CONTROL_VOLTAGE_LIMIT_V", 200.0),
        control_target_current_a=env_float("CONTROL_TARGET_CURRENT_A", 1.5),
        overload_threshold_w=env_float("OVERLOAD_THRESHOLD_W", 0.005),
        live_path=env_str("LIVE_PATH", "2_AC_Power_Facter/1_AC_Power_Choke"),
        dc_path=env_str("DC_PATH", "2_AC_Power_Facter"),
        history_path=env_str("HISTORY_PATH", "2_AC_Power_Facter/history"),
        demo_mode=demo_mode,
        deterministic=env_flag("DEMO_DETERMINISTIC", demo_mode),
        seed=env_int("DEMO_SEED", 7),
        demo_feed_interval_s=env_float("DEMO_FEED_INTERVAL_S", 1.0),
    )
