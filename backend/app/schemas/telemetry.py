from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.domain import BestHarmonic, ChannelWindow, HarmonicComponent, normalize_choke

Band = Literal["low", "medium", "high"]

class SamplePush(BaseModel):
    """Device-shaped write for the live path (keys as the firmware sends them)."""
    model_config = ConfigDict(populate_by_name=True)

    current: Optional[float] = Field(None, alias="I", allow_inf_nan=False)
    voltage: Optional[float] = Field(None, alias="V", allow_inf_nan=False)
    power: Optional[float] = Field(None, alias="W", allow_inf_nan=False)
    power_factor: Optional[float] = Field(None, alias="P", allow_inf_nan=False)
    relay: Optional[Literal[0, 1]] = Field(None, alias="Relay")
    choke: Optional[Literal["0", "1", 0, 1]] = Field(None, alias="Choke")
    dc_current: Optional[float] = Field(None, alias="DC_Current", allow_inf_nan=False)
    dc_voltage: Optional[float] = Field(None, alias="DC_Voltage", allow_inf_nan=False)

    def to_store(self) -> Dict[str, Any]:
        out = self.model_dump(by_alias=True, exclude_none=True)
        if "Choke" in out:
            # store keeps the string form
            out["Choke"] = str(normalize_choke(out["Choke"]))
        return out

class HistoryRecordIn(BaseModel):
    ts: float = Field(..., ge=0.0, description="Epoch milliseconds")
    current_a: Optional[float] = None
    voltage_v: Optional[float] = None
    power_w: Optional[float] = None
    distribution_on: bool = False

class ChartWindowsResponse(BaseModel):
    ac: ChannelWindow
    dc: ChannelWindow

class HarmonicBar(HarmonicComponent):
    band: Band

class HarmonicsResponse(BaseModel):
    total_thd: float
    harmonics: List[HarmonicBar]
    best: BestHarmonic
