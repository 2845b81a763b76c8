#file: frontend/data_fetch.py

import os
import aiohttp
import logging
from dotenv import load_dotenv

load_dotenv()

FASTAPI_URL = os.getenv("FASTAPI_URL", "http://localhost:8000")


async def _get(path: str, params: dict | None = None):
    async with aiohttp.ClientSession() as session:
        async with session.get(f"{FASTAPI_URL}{path}", params = params) as response:
            response.raise_for_status()
            return await response.json()


async def _post(path: str, payload: dict):
    async with aiohttp.ClientSession() as session:
        async with session.post(f"{FASTAPI_URL}{path}", json = payload) as response:
            if response.status >= 400:
                try:
                    detail = (await response.json(content_type = None)).get("detail", response.reason)
                except (aiohttp.ContentTypeError, AttributeError, ValueError):
                    detail = response.reason
                raise aiohttp.ClientResponseError(
                    response.request_info, response.history,
                    status = response.status, message = str(detail),
                )
            return await response.json()


async def fetch_sensor_data(calibrated: bool = True):
    """Fetch the newest raw and corrected reading from FastAPI asynchronously."""
    try:
        return await _get("/sensor_data", {"calibrated": str(calibrated).lower()})
    except aiohttp.ClientError as e:
        logging.error(f"Error fetching sensor data: {e}")
        return None


async def fetch_time_range():
    """Fetch the earliest and latest available timestamp from FastAPI asynchronously."""
    try:
        return await _get("/time_range")
    except aiohttp.ClientError as e:
        logging.error(f"Error fetching time range: {e}")
        return None


async def fetch_sensor_history(start_date=None, end_date=None, aggregation="1m", calibrated=True):
    """Fetch historical readings asynchronously from FastAPI with aggregation."""
    params = {"aggregation": aggregation, "calibrated": str(calibrated).lower()}
    if start_date:
        params["start_date"] = str(start_date)
    if end_date:
        params["end_date"] = str(end_date)
    try:
        return await _get("/sensor_history", params)
    except aiohttp.ClientResponseError as e:
        logging.error(f"[ERROR] HTTP {e.status}: {e.message}")
    except aiohttp.ClientError as e:
        logging.error(f"[ERROR] Network request failed: {e}")
    return []


async def fetch_calibration():
    try:
        return await _get("/calibration")
    except aiohttp.ClientError as e:
        logging.error(f"Error fetching calibration data: {e}")
        return {}


async def fetch_calibration_status(grouping: str):
    try:
        return await _get(f"/calibration/{grouping}/status")
    except aiohttp.ClientError as e:
        logging.error(f"Error fetching {grouping} calibration status: {e}")
        return None


async def start_calibration(grouping: str, references: dict):
    """Start a calibration run; raises ClientResponseError with the server's message on rejection."""
    return await _post(f"/calibration/{grouping}/start", references)


async def reset_calibration(grouping: str):
    return await _post(f"/calibration/{grouping}/reset", {})


async def fetch_co2_setting() -> bool:
    try:
        setting = await _get("/co2_setting")
        return bool(setting.get("use_co2_from_o2", False))
    except aiohttp.ClientError as e:
        logging.error(f"Error fetching CO2 setting: {e}")
        return False


async def save_co2_setting(enabled: bool):
    return await _post("/co2_setting", {"use_co2_from_o2": enabled})
