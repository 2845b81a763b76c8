# file: backend/channels.py

from enum import Enum
from typing import Dict, Tuple

SAMPLE_COUNT = 30
SAMPLE_INTERVAL_S = 6
CRITICAL_T_VALUE = 2.045  # two-tailed, df=29, alpha=0.05
CO_SOFT_CAP = 2000.0
DEFAULT_O2_REFERENCE = 20.9
O2_AMBIENT_PERCENT = 20.90
CALIBRATION_REFRESH_S = 30
COMPLETE_DISPLAY_S = 3
PPM_PER_PERCENT = 10000


class GasChannel(str, Enum):
    CO = "CO"
    CO2 = "CO2"
    O2 = "O2"

    @property
    def field(self) -> str:
        """Name of the reading field carrying this channel."""
        return self.value.lower()

    @property
    def unit(self) -> str:
        return "ppm" if self is GasChannel.CO else "%"


class Grouping(str, Enum):
    CO = "co"
    CO2_O2 = "co2_o2"

    @property
    def channels(self) -> Tuple[GasChannel, ...]:
        return GROUPING_CHANNELS[self]


GROUPING_CHANNELS: Dict[Grouping, Tuple[GasChannel, ...]] = {
    Grouping.CO: (GasChannel.CO,),
    Grouping.CO2_O2: (GasChannel.CO2, GasChannel.O2),
}

O2_NOMINAL_RANGE = (19.5, 23.5)
