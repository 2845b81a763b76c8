# file : /backend/main.py

import logging
import uvicorn
from dataclasses import dataclass
from fastapi import Depends, FastAPI, Query, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from contextlib import asynccontextmanager
from typing import List, Optional, Dict

from backend.channels import Grouping
from backend.correction import CorrectionApplier
from backend.database import InfluxCalibrationStore, InfluxDatabase, InfluxSettingsStore, create_client
from backend.exceptions import InvalidReference, RunInProgress, StoreError
from backend.models import (
    CalibrationRecord,
    Co2Setting,
    GasReading,
    LatestReading,
    RunStatus,
    SensorSample,
    StartCalibrationRequest,
)
from backend.runner import CalibrationRunner
from backend.scheduler import run_schedule
from backend.sensor_source import SENSOR_MAX_AGE_S, InfluxSensorSource
from backend.utils import parse_date_range, validate_aggregation

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


@dataclass
class Services:
    db: InfluxDatabase
    store: InfluxCalibrationStore
    settings: InfluxSettingsStore
    applier: CorrectionApplier
    runner: CalibrationRunner


def build_services(db: InfluxDatabase) -> Services:
    store = InfluxCalibrationStore(db)
    settings = InfluxSettingsStore(db)
    applier = CorrectionApplier(store, settings)
    runner = CalibrationRunner(InfluxSensorSource(db), store, applier)
    return Services(db = db, store = store, settings = settings, applier = applier, runner = runner)


@asynccontextmanager
async def lifespan(app: FastAPI) :
    """Connect to InfluxDB, load calibration and start the periodic refresh on startup.

    Services already placed on ``app.state`` are used as they are.
    """
    client = None
    services = getattr(app.state, "services", None)
    if services is None:
        client = create_client()
        services = build_services(InfluxDatabase(client))
        app.state.services = services
    await services.applier.refresh()
    refresh_task = run_schedule(services.applier)
    try:
        yield
    finally:
        refresh_task.cancel()
        await services.runner.shutdown()
        if client is not None:
            await client.close()


app = FastAPI(
    title = "Gas Analyzer Monitoring",
    description = "This is a FastAPI application to monitor CO, CO2 and O2 readings and calibrate the analyzer sensors.",
    version = "0.1",
    lifespan = lifespan
)


def get_services(request: Request) -> Services:
    return request.app.state.services


FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_gas_reading(request: Request) -> GasReading:
    """Parse a reading sent as a JSON body or as form fields, as the analyzer firmware posts it."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(FORM_CONTENT_TYPES):
            payload = dict(await request.form())
        else:
            payload = await request.json()
    except ValueError:
        raise RequestValidationError([{"type": "json_invalid", "loc": ("body",), "msg": "Invalid request body", "input": None}])
    try:
        return GasReading.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


@app.post("/sensor_value", response_model=GasReading)
async def sensor_value(data: GasReading = Depends(read_gas_reading), services: Services = Depends(get_services)):
    """Store a reading posted by the analyzer device."""
    try:
        await services.db.save_reading(data)
        return data
    except StoreError as e:
        logging.error(f"Error saving sensor data: {e}")
        raise HTTPException(status_code=500, detail="Failed to save sensor data")


@app.get("/sensor_data", response_model=LatestReading)
async def sensor_data(
    calibrated: bool = Query(True, description="Apply the latest passed calibration"),
    services: Services = Depends(get_services)
):
    """Fetch the newest reading, raw and corrected."""
    try:
        row = await services.db.get_latest_reading(SENSOR_MAX_AGE_S)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch sensor data")
    if row is None:
        raise HTTPException(status_code=404, detail="No recent sensor data")
    corrected = services.applier.correct_sample(row, calibrated)
    return LatestReading(raw = SensorSample(**row), corrected = SensorSample(**corrected), calibrated = calibrated)


@app.get("/sensor_history", response_model=List[SensorSample])
async def sensor_history(
    start_date: Optional[str] = Query(None, description="Start date in YYYY-MM-DD format"),
    end_date: Optional[str] = Query(None, description="End date in YYYY-MM-DD format"),
    aggregation: str = Query("1m", description="Aggregation interval (e.g., 1m, 1h, 1d)"),
    calibrated: bool = Query(True, description="Apply the latest passed calibration"),
    services: Services = Depends(get_services)
):
    """Fetch historical readings, corrected row by row."""
    try:
        start, end = parse_date_range(start_date, end_date)
        validate_aggregation(aggregation)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        rows = await services.db.get_sensor_history(start.isoformat(), end.isoformat(), aggregation)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch sensor history")
    return services.applier.correct_rows(rows, calibrated)


@app.get("/time_range", response_model=tuple[str, str] | None)
async def time_range(services: Services = Depends(get_services)):
    """Fetch the earliest and latest timestamps available in the database."""
    try:
        return await services.db.get_time_range()
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch time range")


@app.get("/calibration", response_model=Dict[str, CalibrationRecord])
async def calibration(services: Services = Depends(get_services)):
    """Fetch the stored calibration record of every channel."""
    try:
        records = await services.store.load_all()
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch calibration data")
    return {channel.value: record for channel, record in records.items()}


@app.post("/calibration/{grouping}/start", response_model=RunStatus, status_code=202)
async def start_calibration(grouping: Grouping, request: StartCalibrationRequest,
                            services: Services = Depends(get_services)):
    """Start capturing readings for CO alone or for CO2 and O2 together."""
    try:
        run = services.runner.start(grouping, request.references(grouping))
    except InvalidReference as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    return run.status()


@app.get("/calibration/{grouping}/status", response_model=RunStatus)
async def calibration_status(grouping: Grouping, services: Services = Depends(get_services)):
    return services.runner.status(grouping).status()


@app.post("/calibration/{grouping}/reset", response_model=RunStatus)
async def reset_calibration(grouping: Grouping, services: Services = Depends(get_services)):
    """Stop the run of a grouping and discard its progress; stored records stay."""
    return services.runner.reset(grouping).status()


@app.get("/co2_setting", response_model=Co2Setting)
async def co2_setting(services: Services = Depends(get_services)):
    try:
        enabled = await services.settings.get_co2_from_o2()
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch CO2 setting")
    services.applier.set_co2_derivation(enabled)
    return Co2Setting(use_co2_from_o2 = enabled)


@app.post("/co2_setting", response_model=Co2Setting)
async def save_co2_setting(setting: Co2Setting, services: Services = Depends(get_services)):
    """Toggle deriving CO2 from O2 for every reading."""
    try:
        await services.settings.set_co2_from_o2(setting.use_co2_from_o2)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to save CO2 setting")
    services.applier.set_co2_derivation(setting.use_co2_from_o2)
    logging.info(f"CO2 from O2 derivation set to {setting.use_co2_from_o2}")
    return setting


if __name__ == "__main__" :
    uvicorn.run(app, host = "0.0.0.0", port = 8000, log_level="info")
