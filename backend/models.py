#file: backend/models.py

from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Union

from backend.channels import DEFAULT_O2_REFERENCE, GasChannel, Grouping


class GasReading(BaseModel):
    node_name: str = Field("node_unknown", description="Identifier of the posting analyzer node")
    co: float = Field(0.0, ge=0, description="CO concentration (ppm)")
    co2: float = Field(0.0, ge=0, description="CO2 concentration as sent by the device (ppm)")
    o2: float = Field(0.0, ge=0, description="O2 concentration (%)")
    fan: int = Field(0, ge=0, le=1, description="Fan relay state")
    compressor: int = Field(0, ge=0, le=1, description="Compressor relay state")


class SensorSample(BaseModel):
    timestamp: Optional[str] = Field(None, description="Timestamp in ISO format")
    co: float = Field(..., description="CO concentration (ppm)")
    co2: float = Field(..., description="CO2 concentration (%)")
    o2: float = Field(..., description="O2 concentration (%)")


class LatestReading(BaseModel):
    raw: SensorSample
    corrected: SensorSample
    calibrated: bool = Field(..., description="Whether calibration was requested for the corrected values")


class CalibrationRecord(BaseModel):
    gas_type: GasChannel = Field(..., description="Calibrated gas channel")
    reference_value: float = Field(..., description="True concentration of the reference gas")
    readings: List[float] = Field(default_factory = list, description="Raw samples in collection order")
    average: float = Field(0.0, description="Mean of the readings")
    t_value: Optional[float] = Field(None, description="One-sample t statistic")
    passed: Optional[bool] = Field(None, description="True when |t| is within the critical value")
    correction_slope: float = Field(1.0, description="Linear correction slope")
    correction_intercept: float = Field(0.0, description="Linear correction intercept")
    updated_at: Optional[str] = Field(None, description="Timestamp of the last write in ISO format")


class StartCalibrationRequest(BaseModel):
    # operator input is validated when the run starts, so text is accepted here
    co: Optional[Union[float, str]] = Field(None, description="CO reference value (ppm)")
    co2: Optional[Union[float, str]] = Field(None, description="CO2 reference value (%)")
    o2: Optional[Union[float, str]] = Field(DEFAULT_O2_REFERENCE, description="O2 reference value (%)")

    def references(self, grouping: Grouping) -> Dict[GasChannel, Optional[Union[float, str]]]:
        return {channel: getattr(self, channel.field) for channel in grouping.channels}


class ChannelResult(BaseModel):
    reference_value: float
    average: float
    t_value: float
    passed: bool
    correction_slope: float
    correction_intercept: float


class RunStatus(BaseModel):
    grouping: Grouping
    state: str = Field(..., description="idle, calibrating, computing or complete")
    collected: int = Field(0, ge=0, description="Samples collected so far")
    total: int = Field(..., description="Samples required for a run")
    progress: float = Field(0.0, ge=0, le=100, description="Capture progress in percent")
    latest: Dict[str, float] = Field(default_factory = dict, description="Most recent sample per channel")
    results: Dict[str, ChannelResult] = Field(default_factory = dict, description="Results of the last completed run")
    error: Optional[str] = Field(None, description="Message of the last failure")


class Co2Setting(BaseModel):
    use_co2_from_o2: bool = Field(False, description="Derive CO2 as 20.90 - O2 instead of measuring it")
