import asyncio

import pytest

from backend.channels import GasChannel
from backend.correction import CorrectionApplier
from backend.exceptions import SensorUnavailable, StoreError
from backend.runner import CalibrationRunner


class MemoryCalibrationStore:
    def __init__(self, records=None, fail_on=None):
        self.records = dict(records or {})
        self.fail_on = fail_on
        self.writes = []

    async def load_all(self):
        return dict(self.records)

    async def upsert(self, record):
        if record.gas_type == self.fail_on:
            raise StoreError("write rejected")
        self.writes.append(record)
        self.records[record.gas_type] = record


class MemorySettingsStore:
    def __init__(self, enabled=False):
        self.enabled = enabled

    async def get_co2_from_o2(self):
        return self.enabled

    async def set_co2_from_o2(self, enabled):
        self.enabled = enabled


class ScriptedSensorSource:
    """Returns the same reading every call, failing on the given call number."""

    def __init__(self, co=410.0, co2=0.04, o2=20.9, fail_at=None):
        self.reading = {GasChannel.CO: co, GasChannel.CO2: co2, GasChannel.O2: o2}
        self.fail_at = fail_at
        self.calls = 0

    async def current_reading(self):
        self.calls += 1
        if self.fail_at is not None and self.calls == self.fail_at:
            raise SensorUnavailable("sensor offline")
        return dict(self.reading)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return MemoryCalibrationStore()


@pytest.fixture
def settings():
    return MemorySettingsStore()


@pytest.fixture
def applier(store, settings):
    return CorrectionApplier(store, settings)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def source():
    return ScriptedSensorSource()


@pytest.fixture
def runner(source, store, applier, sleep):
    return CalibrationRunner(source, store, applier, sleep = sleep)
