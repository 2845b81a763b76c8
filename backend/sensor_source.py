# file: backend/sensor_source.py

import os
import asyncio
import logging
from dotenv import load_dotenv
from typing import Dict

from backend.channels import GasChannel
from backend.database import InfluxDatabase
from backend.exceptions import SensorUnavailable, StoreError

load_dotenv()

SENSOR_TIMEOUT_S = float(os.getenv("SENSOR_TIMEOUT_S", "5"))
SENSOR_MAX_AGE_S = int(os.getenv("SENSOR_MAX_AGE_S", "60"))


class InfluxSensorSource:
    """Current instantaneous reading for all channels, taken from the newest stored device post."""

    def __init__(self, db: InfluxDatabase, timeout: float = SENSOR_TIMEOUT_S, max_age_s: int = SENSOR_MAX_AGE_S):
        self.db = db
        self.timeout = timeout
        self.max_age_s = max_age_s

    async def current_reading(self) -> Dict[GasChannel, float]:
        try:
            row = await asyncio.wait_for(self.db.get_latest_reading(self.max_age_s), timeout = self.timeout)
        except asyncio.TimeoutError as e:
            logging.error(f"Sensor reading timed out after {self.timeout}s")
            raise SensorUnavailable(f"Sensor reading timed out after {self.timeout}s") from e
        except StoreError as e:
            raise SensorUnavailable(f"Sensor reading failed: {e}") from e

        if row is None:
            raise SensorUnavailable(f"No sensor reading in the last {self.max_age_s}s")
        return {channel: row[channel.field] for channel in GasChannel}
