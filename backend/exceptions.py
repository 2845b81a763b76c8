# file: backend/exceptions.py

from typing import Optional

from backend.channels import GasChannel


class SensorUnavailable(Exception):
    """The sensor source could not supply a current reading."""


class StoreError(Exception):
    """A read or write against InfluxDB failed."""


class CalibrationError(Exception):
    stage = "calibration"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"


class InvalidReference(CalibrationError):
    stage = "validation"


class RunInProgress(CalibrationError):
    stage = "start"


class CaptureFailed(CalibrationError):
    stage = "capture"


class PersistFailed(CalibrationError):
    stage = "persist"

    def __init__(self, message: str, channel: Optional[GasChannel] = None):
        super().__init__(message)
        self.channel = channel
