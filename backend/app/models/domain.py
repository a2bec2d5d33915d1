from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# 0) ENUMS (Type Safety)
# ============================================================

class ChokeMode(str, Enum):
    OFF = "0"
    ON = "1"


class AlertKind(str, Enum):
    OVERLOAD = "overload"
    UNBALANCED = "unbalanced"
    HIGH_THD = "thd"


class SeverityLevel(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class HarmonicStatus(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    HIGH = "High"
    BELOW_TARGET = "Below Target"
    OPTIMAL = "Optimal"
    ABOVE_TARGET = "Above Target"


class MalformedPayloadError(ValueError):
    """Inbound record could not be interpreted as a telemetry sample."""


# ============================================================
# 1) INBOUND SAMPLES
# ============================================================

def _num(payload: Mapping[str, Any], key: str) -> float:
    val = payload.get(key)
    # Device store writes falsy placeholders ("", null, 0) for idle channels
    if val is None or val == "" or val is False:
        return 0.0
    try:
        out = float(val)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"field {key!r} is not numeric: {val!r}") from e
    if math.isnan(out) or math.isinf(out):
        raise MalformedPayloadError(f"field {key!r} is not finite: {val!r}")
    return out


def normalize_choke(value: Any) -> int:
    """Choke flag arrives as "0"/"1" or 0/1 depending on the firmware build."""
    return 1 if value in ("1", 1) and value is not True else 0


def normalize_relay(value: Any) -> int:
    return 1 if value in ("1", 1) and value is not True else 0


class RawSample(BaseModel):
    """
    One inbound push from the live-sample path.
    Field aliases are the keys the device writes into the store.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    current: float = Field(0.0, alias="I")
    voltage: float = Field(0.0, alias="V")
    power: float = Field(0.0, alias="W")
    power_factor: float = Field(0.0, alias="P")
    relay: int = Field(0, alias="Relay", ge=0, le=1)
    choke_mode: ChokeMode = Field(ChokeMode.OFF, alias="Choke")
    dc_current: float = Field(0.0, alias="DC_Current")
    dc_voltage: float = Field(0.0, alias="DC_Voltage")
    observed_at: datetime = Field(default_factory=datetime.now, alias="ts")

    @classmethod
    def from_payload(cls, payload: Any, observed_at: Optional[datetime] = None) -> "RawSample":
        if not isinstance(payload, Mapping):
            raise MalformedPayloadError(f"expected mapping, got {type(payload).__name__}")
        return cls(
            current=_num(payload, "I"),
            voltage=_num(payload, "V"),
            power=_num(payload, "W"),
            power_factor=_num(payload, "P"),
            relay=normalize_relay(payload.get("Relay")),
            choke_mode=ChokeMode.ON if normalize_choke(payload.get("Choke")) else ChokeMode.OFF,
            dc_current=_num(payload, "DC_Current"),
            dc_voltage=_num(payload, "DC_Voltage"),
            observed_at=observed_at or datetime.now(),
        )

    def differs_from(self, other: Optional["RawSample"]) -> bool:
        if other is None:
            return True
        return (
            self.current != other.current
            or self.voltage != other.voltage
            or self.power != other.power
            or self.power_factor != other.power_factor
            or self.relay != other.relay
            or self.choke_mode != other.choke_mode
        )


class ControlDirective(BaseModel):
    current: Optional[float] = None
    relay: Optional[int] = None

    def is_empty(self) -> bool:
        return self.current is None and self.relay is None

    def to_updates(self) -> Dict[str, Any]:
        """Partial write for the live path; absent fields mean no change."""
        out: Dict[str, Any] = {}
        if self.current is not None:
            out["I"] = self.current
        if self.relay is not None:
            out["Relay"] = self.relay
        return out


class HistoryRecord(BaseModel):
    id: str
    ts: float = 0.0
    current_a: Optional[float] = None
    voltage_v: Optional[float] = None
    power_w: Optional[float] = None
    distribution_on: bool = False


# ============================================================
# 2) DERIVED ANALYTICS
# ============================================================

class TimeSeriesPoint(BaseModel):
    label: str
    value: float


class HarmonicComponent(BaseModel):
    order: int
    amplitude: float = Field(ge=0.0)
    phase: float
    thd: float


class HarmonicProfile(BaseModel):
    harmonics: List[HarmonicComponent]
    total_thd: float = Field(ge=0.0)


class BestHarmonic(HarmonicComponent):
    status: HarmonicStatus
    noise_level: str
    indicator: str


class THDHistoryEntry(BaseModel):
    time: str
    thd: float
    is_anomaly: bool
    is_live: bool
    observed_at: datetime


class Alert(BaseModel):
    id: int
    kind: AlertKind
    severity: SeverityLevel
    message: str
    raised_at: datetime


class LivenessState(BaseModel):
    last_update_at: datetime
    is_active: bool


class PredictionSummary(BaseModel):
    compensation_level: float = Field(ge=0.0, le=100.0)
    response_delay_ms: float
    next_anomaly_eta: datetime
    confidence: float = Field(ge=0.0, le=100.0)


# ============================================================
# 3) PIPELINE SNAPSHOT (read-only view for the presentation layer)
# ============================================================

class LiveData(BaseModel):
    current: float = 0.0
    voltage: float = 0.0
    power: float = 0.0
    power_factor: float = 0.0
    relay: int = 0
    choke_mode: ChokeMode = ChokeMode.OFF
    dc_current: float = 0.0
    dc_voltage: float = 0.0
    frequency: float = 50.0
    ts: datetime = Field(default_factory=datetime.now)


class ChannelWindow(BaseModel):
    labels: List[str] = Field(default_factory=list)
    series: Dict[str, List[float]] = Field(default_factory=dict)


class PipelineState(BaseModel):
    emitted_at: datetime
    live: LiveData
    history: List[HistoryRecord]
    ac: ChannelWindow
    dc: ChannelWindow
    harmonics: HarmonicProfile
    best_harmonic: BestHarmonic
    thd_history: List[THDHistoryEntry]
    alerts: List[Alert]
    predictions: PredictionSummary
    liveness: LivenessState


# ============================================================
# 4) API RESPONSE SCHEMAS
# ============================================================

class HealthResponse(BaseModel):
    status: str
    ts: str
    feed_active: bool


class SampleIngestResponse(BaseModel):
    ok: bool
    path: str


class DismissResponse(BaseModel):
    ok: bool
    id: int
    remaining: int
