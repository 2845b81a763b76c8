# file: backend/correction.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from backend.channels import GasChannel, O2_AMBIENT_PERCENT
from backend.exceptions import StoreError
from backend.models import CalibrationRecord


class CalibrationStore(Protocol):
    async def load_all(self) -> Dict[GasChannel, CalibrationRecord]: ...

    async def upsert(self, record: CalibrationRecord) -> None: ...


class SettingsStore(Protocol):
    async def get_co2_from_o2(self) -> bool: ...

    async def set_co2_from_o2(self, enabled: bool) -> None: ...


@dataclass(frozen=True)
class Identity:
    def apply(self, raw: float, complement: Optional[float] = None) -> float:
        return raw


@dataclass(frozen=True)
class DirectCorrection:
    slope: float
    intercept: float

    def apply(self, raw: float, complement: Optional[float] = None) -> float:
        return max(0.0, raw * self.slope + self.intercept)


@dataclass(frozen=True)
class DerivedFromComplement:
    other: GasChannel = GasChannel.O2
    total: float = O2_AMBIENT_PERCENT

    def apply(self, raw: float, complement: Optional[float] = None) -> float:
        if complement is None:
            return raw
        return max(0.0, self.total - complement)


Strategy = Union[Identity, DirectCorrection, DerivedFromComplement]


class CorrectionApplier:
    """Cached latest calibration per channel, applied to raw readings.

    Consumers only call ``correct``, ``correct_sample`` and ``correct_rows``;
    the cache is replaced as a whole by ``refresh`` and never patched.
    """

    def __init__(self, store: CalibrationStore, settings: Optional[SettingsStore] = None):
        self.store = store
        self.settings = settings
        self.records: Dict[GasChannel, CalibrationRecord] = {}
        self.use_co2_from_o2 = False

    async def refresh(self) -> bool:
        """Reload records and the CO2 derivation flag; keeps the previous cache on failure."""
        try:
            records = await self.store.load_all()
            use_co2_from_o2 = await self.settings.get_co2_from_o2() if self.settings else self.use_co2_from_o2
        except StoreError as e:
            logging.error(f"Error refreshing calibration cache: {e}")
            return False
        self.records = dict(records)
        self.use_co2_from_o2 = use_co2_from_o2
        return True

    def set_co2_derivation(self, enabled: bool) -> None:
        self.use_co2_from_o2 = bool(enabled)

    def strategy_for(self, channel: GasChannel, use_calibration: bool) -> Strategy:
        if channel is GasChannel.CO2 and self.use_co2_from_o2:
            return DerivedFromComplement()
        record = self.records.get(channel)
        if not use_calibration or record is None or record.passed is not True:
            return Identity()
        return DirectCorrection(record.correction_slope, record.correction_intercept)

    def correct(self, channel: GasChannel, raw: float, use_calibration: bool, complement: Optional[float] = None) -> float:
        return self.strategy_for(channel, use_calibration).apply(raw, complement)

    def correct_sample(self, sample: Dict[str, Any], use_calibration: bool) -> Dict[str, Any]:
        """Correct one {co, co2, o2} reading; keys other than the gas fields pass through."""
        corrected = dict(sample)
        o2 = self.correct(GasChannel.O2, float(sample["o2"]), use_calibration)
        corrected["o2"] = o2
        corrected["co2"] = self.correct(GasChannel.CO2, float(sample["co2"]), use_calibration, complement = o2)
        corrected["co"] = self.correct(GasChannel.CO, float(sample["co"]), use_calibration)
        return corrected

    def correct_rows(self, rows: Iterable[Dict[str, Any]], use_calibration: bool) -> List[Dict[str, Any]]:
        return [self.correct_sample(row, use_calibration) for row in rows]

    @property
    def is_calibrated(self) -> bool:
        return any(record.passed is True for record in self.records.values())
