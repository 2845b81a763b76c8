import asyncio

import pytest
from fastapi.testclient import TestClient

from backend.channels import GasChannel, Grouping
from backend.correction import CorrectionApplier
from backend.exceptions import StoreError
from backend.main import Services, app
from backend.models import CalibrationRecord
from backend.runner import CalibrationRunner

from conftest import MemoryCalibrationStore, MemorySettingsStore

LATEST = {"timestamp": "2026-03-01T12:00:00+00:00", "co": 50.0, "co2": 0.04, "o2": 20.5}


class FakeDatabase:
    def __init__(self, latest = LATEST, history = None, fail = False):
        self.latest = latest
        self.history = history or []
        self.fail = fail
        self.saved = []
        self.history_calls = []

    async def save_reading(self, reading):
        if self.fail:
            raise StoreError("down")
        self.saved.append(reading)

    async def get_latest_reading(self, max_age_s):
        return self.latest

    async def get_sensor_history(self, start, end, aggregation):
        self.history_calls.append((start, end, aggregation))
        return [dict(row) for row in self.history]

    async def get_time_range(self):
        return ("2026-03-01 00:00:00+00:00", "2026-03-02 00:00:00+00:00")


class HangingSource:
    async def current_reading(self):
        await asyncio.sleep(3600)


def co_record(passed = True):
    return CalibrationRecord(
        gas_type = GasChannel.CO, reference_value = 400.0, readings = [410.0] * 30, average = 410.0,
        t_value = 0.0, passed = passed, correction_slope = 1.02, correction_intercept = -3.0,
    )


@pytest.fixture
def services(monkeypatch):
    store = MemoryCalibrationStore({GasChannel.CO: co_record()})
    settings = MemorySettingsStore()
    applier = CorrectionApplier(store, settings)
    runner = CalibrationRunner(HangingSource(), store, applier)
    services = Services(db = FakeDatabase(history = [LATEST]), store = store, settings = settings,
                        applier = applier, runner = runner)
    monkeypatch.setattr(app.state, "services", services, raising = False)
    return services


@pytest.fixture
def client(services):
    with TestClient(app) as client:
        yield client


def test_sensor_value_is_stored(client, services):
    response = client.post("/sensor_value", json = {"node_name": "node_1", "co": 12, "co2": 450, "o2": 20.9})

    assert response.status_code == 200
    assert services.db.saved[0].co2 == 450


def test_sensor_value_accepts_device_form_post(client, services):
    form = {"node_name": "node_7", "co": "10", "co2": "400", "o2": "20.9", "fan": "1", "compressor": "0"}

    response = client.post("/sensor_value", data = form)

    assert response.status_code == 200
    saved = services.db.saved[0]
    assert saved.node_name == "node_7"
    assert saved.co == 10.0
    assert saved.co2 == 400.0
    assert saved.fan == 1


def test_sensor_value_form_post_is_validated(client, services):
    response = client.post("/sensor_value", data = {"co": "abc"})

    assert response.status_code == 422
    assert services.db.saved == []


def test_sensor_value_rejects_malformed_json(client):
    response = client.post("/sensor_value", content = b"{not json", headers = {"content-type": "application/json"})

    assert response.status_code == 422


def test_sensor_value_rejects_negative(client):
    response = client.post("/sensor_value", json = {"co": -1})

    assert response.status_code == 422


def test_sensor_value_store_failure(client, services):
    services.db.fail = True

    response = client.post("/sensor_value", json = {"co": 1})

    assert response.status_code == 500


def test_sensor_data_corrected(client):
    body = client.get("/sensor_data", params = {"calibrated": "true"}).json()

    assert body["raw"]["co"] == 50.0
    assert body["corrected"]["co"] == pytest.approx(48.0)
    assert body["corrected"]["o2"] == 20.5


def test_sensor_data_uncalibrated_is_raw(client):
    body = client.get("/sensor_data", params = {"calibrated": "false"}).json()

    assert body["corrected"] == body["raw"]


def test_sensor_data_missing(client, services):
    services.db.latest = None

    assert client.get("/sensor_data").status_code == 404


def test_history_is_corrected_per_row(client, services):
    response = client.get("/sensor_history", params = {"start_date": "2026-03-01", "end_date": "2026-03-02",
                                                       "aggregation": "1h"})

    assert response.status_code == 200
    rows = response.json()
    assert rows[0]["co"] == pytest.approx(48.0)
    assert rows[0]["timestamp"] == LATEST["timestamp"]
    assert services.db.history_calls == [("2026-03-01", "2026-03-02", "1h")]


@pytest.mark.parametrize("params", [
    {"start_date": "2026-03-02", "end_date": "2026-03-01"},
    {"start_date": "03/01/2026"},
    {"aggregation": "1h) |> drop()"},
])
def test_history_rejects_bad_parameters(client, params):
    assert client.get("/sensor_history", params = params).status_code == 400


def test_calibration_records(client):
    body = client.get("/calibration").json()

    assert set(body) == {"CO"}
    assert body["CO"]["passed"] is True
    assert len(body["CO"]["readings"]) == 30


def test_start_rejects_non_numeric_reference(client, services):
    response = client.post("/calibration/co/start", json = {"co": "abc"})

    assert response.status_code == 400
    assert "CO reference" in response.json()["detail"]
    assert services.runner.status(Grouping.CO).state == "idle"


def test_start_status_conflict_and_reset(client):
    started = client.post("/calibration/co2_o2/start", json = {"co2": 0.04})

    assert started.status_code == 202
    assert started.json()["state"] == "calibrating"
    assert started.json()["total"] == 30

    conflict = client.post("/calibration/co2_o2/start", json = {"co2": 0.04, "o2": 20.9})
    assert conflict.status_code == 409

    assert client.get("/calibration/co2_o2/status").json()["state"] == "calibrating"
    assert client.get("/calibration/co/status").json()["state"] == "idle"

    reset = client.post("/calibration/co2_o2/reset")
    assert reset.json()["state"] == "idle"
    assert client.get("/calibration/co2_o2/status").json()["collected"] == 0


def test_unknown_grouping(client):
    assert client.get("/calibration/nox/status").status_code == 422


def test_co2_setting_toggle_derives_co2(client, services):
    assert client.get("/co2_setting").json() == {"use_co2_from_o2": False}

    response = client.post("/co2_setting", json = {"use_co2_from_o2": True})

    assert response.json() == {"use_co2_from_o2": True}
    assert services.settings.enabled is True
    body = client.get("/sensor_data").json()
    assert body["corrected"]["co2"] == pytest.approx(0.40)
    assert body["raw"]["co2"] == 0.04
