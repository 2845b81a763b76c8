# file: backend/database.py

import os
import json
import logging
from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync
from dotenv import load_dotenv
from typing import List, Dict, Any, Optional

from backend.channels import GasChannel, PPM_PER_PERCENT
from backend.exceptions import StoreError
from backend.models import CalibrationRecord, GasReading
from backend.utils import get_current_time

load_dotenv()

INFLUXDB_URL = os.getenv("INFLUXDB_URL")
INFLUXDB_TOKEN = os.getenv("INFLUXDB_TOKEN")
INFLUXDB_ORG = os.getenv("INFLUXDB_ORG")
INFLUXDB_BUCKET = os.getenv("INFLUXDB_BUCKET")

SENSOR_MEASUREMENT = "gas_analyzer"
CALIBRATION_MEASUREMENT = "calibration"
SETTINGS_MEASUREMENT = "co2_settings"

GAS_FIELDS = ["co", "co2", "o2"]
CALIBRATION_FIELDS = ["reference_value", "average", "t_value", "passed", "correction_slope", "correction_intercept"]


def create_client() -> InfluxDBClientAsync:
    """Build the async InfluxDB client from environment settings."""
    # Validate environment variables
    if not all([INFLUXDB_URL, INFLUXDB_TOKEN, INFLUXDB_ORG, INFLUXDB_BUCKET]) :
        raise ValueError("Missing required InfluxDB environment variables")
    return InfluxDBClientAsync(url = INFLUXDB_URL, token = INFLUXDB_TOKEN, org = INFLUXDB_ORG)


def reading_to_point(reading: GasReading, timestamp: str | None = None) -> Point:
    """Convert a device reading to a point; CO2 is stored in percent."""
    return Point(SENSOR_MEASUREMENT).tag("node_name", reading.node_name) \
        .field("co", float(reading.co)) \
        .field("co2", float(reading.co2) / PPM_PER_PERCENT) \
        .field("o2", float(reading.o2)) \
        .field("fan", int(reading.fan)) \
        .field("compressor", int(reading.compressor)) \
        .time(timestamp or get_current_time())


def record_to_point(record: CalibrationRecord) -> Point:
    """Convert a calibration record to a single point holding every field of the record."""
    point = Point(CALIBRATION_MEASUREMENT).tag("gas_type", record.gas_type.value) \
        .field("reference_value", float(record.reference_value)) \
        .field("readings", json.dumps(record.readings)) \
        .field("average", float(record.average)) \
        .field("correction_slope", float(record.correction_slope)) \
        .field("correction_intercept", float(record.correction_intercept))
    # Influx has no null fields, absent means "no run completed"
    if record.t_value is not None:
        point.field("t_value", float(record.t_value))
    if record.passed is not None:
        point.field("passed", bool(record.passed))
    return point.time(record.updated_at or get_current_time())


def record_from_values(values: Dict[str, Any]) -> CalibrationRecord:
    """Build a calibration record from a pivoted Flux row."""
    readings = values.get("readings")
    time = values.get("_time")
    return CalibrationRecord(
        gas_type = GasChannel(values["gas_type"]),
        reference_value = float(values.get("reference_value") or 0),
        readings = json.loads(readings) if readings else [],
        average = float(values.get("average") or 0),
        t_value = values.get("t_value"),
        passed = values.get("passed"),
        correction_slope = float(values.get("correction_slope") or 1),
        correction_intercept = float(values.get("correction_intercept") or 0),
        updated_at = time.isoformat() if time is not None else None,
    )


class InfluxDatabase:
    """Thin async wrapper around the InfluxDB query and write APIs."""

    def __init__(self, client: InfluxDBClientAsync, bucket: str | None = None):
        self.bucket = bucket or INFLUXDB_BUCKET
        self.query_api = client.query_api()
        self.write_api = client.write_api()

    async def query(self, query: str) -> List[Dict[str, Any]]:
        try :
            tables = await self.query_api.query(query)
        except Exception as e :
            logging.error(f"Error querying InfluxDB: {e}")
            raise StoreError(str(e)) from e
        return [record.values for table in tables for record in table.records]

    async def write(self, points: List[Point]) -> None:
        if not points:
            logging.warning("No points to save to InfluxDB")
            return
        try:
            await self.write_api.write(bucket = self.bucket, record = points)
        except Exception as e:
            logging.error(f"Error saving to InfluxDB: {e}")
            raise StoreError(str(e)) from e

    async def save_reading(self, reading: GasReading) -> None:
        await self.write([reading_to_point(reading)])

    async def get_latest_reading(self, max_age_s: int) -> Optional[Dict[str, Any]]:
        """Fetch the newest reading no older than max_age_s seconds."""
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: -{int(max_age_s)}s)
            |> filter(fn: (r) => r._measurement == "{SENSOR_MEASUREMENT}")
            |> filter(fn: (r) => r._field == "co" or r._field == "co2" or r._field == "o2")
            |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
            |> group()
            |> sort(columns: ["_time"], desc: true)
            |> limit(n: 1)
        '''
        rows = await self.query(query)
        if not rows:
            return None
        row = rows[0]
        return {
            "timestamp": row["_time"].isoformat(),
            **{field: float(row.get(field) or 0) for field in GAS_FIELDS},
        }

    async def get_sensor_history(self, start: str, end: str, aggregation: str = "1m") -> List[Dict[str, Any]]:
        """Fetch readings between two dates (YYYY-MM-DD), averaged per aggregation window."""
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: {start}T00:00:00Z, stop: {end}T23:59:59Z)
            |> filter(fn: (r) => r._measurement == "{SENSOR_MEASUREMENT}")
            |> filter(fn: (r) => r._field == "co" or r._field == "co2" or r._field == "o2")
            |> group(columns: ["_field"])
            |> aggregateWindow(every: {aggregation}, fn: mean, createEmpty: false)
            |> group()
            |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
            |> sort(columns: ["_time"])
        '''
        rows = await self.query(query)
        return [
            {
                "timestamp": row["_time"].isoformat(),
                **{field: float(row.get(field) or 0) for field in GAS_FIELDS},
            }
            for row in rows
        ]

    async def get_time_range(self) -> tuple[str, str] | None:
        """Fetch the earliest and latest reading timestamps of the last 30 days."""

        async def get_time(desc: str = "false") -> str | None :
            query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: -30d)
            |> filter(fn: (r) => r._measurement == "{SENSOR_MEASUREMENT}")
            |> keep(columns: ["_time"])
            |> group(columns: [])
            |> sort(columns: ["_time"], desc: {desc})
            |> limit(n: 1)
            '''
            rows = await self.query(query)
            return rows[0]["_time"] if rows else None

        min_time = await get_time(desc = "false")
        max_time = await get_time(desc = "true")
        return (str(min_time), str(max_time)) if min_time and max_time else None


class InfluxCalibrationStore:
    """One calibration record per gas channel; the newest point per gas_type is the record."""

    def __init__(self, db: InfluxDatabase):
        self.db = db

    async def load_all(self) -> Dict[GasChannel, CalibrationRecord]:
        query = f'''
            from(bucket: "{self.db.bucket}")
            |> range(start: -10y)
            |> filter(fn: (r) => r._measurement == "{CALIBRATION_MEASUREMENT}")
            |> group(columns: ["gas_type", "_time"])
            |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
            |> group(columns: ["gas_type"])
            |> sort(columns: ["_time"], desc: true)
            |> limit(n: 1)
        '''
        records = {}
        for values in await self.db.query(query):
            try:
                record = record_from_values(values)
            except (KeyError, TypeError, ValueError) as e:
                logging.error(f"Skipping malformed calibration row for {values.get('gas_type')}: {e}")
                continue
            records[record.gas_type] = record
        return records

    async def upsert(self, record: CalibrationRecord) -> None:
        """Write the full record; same channel and timestamp overwrite, so retries are idempotent."""
        await self.db.write([record_to_point(record)])
        logging.info(f"Saved {record.gas_type.value} calibration (passed={record.passed})")


class InfluxSettingsStore:
    """Persisted process-wide CO2-from-O2 flag."""

    def __init__(self, db: InfluxDatabase):
        self.db = db

    async def get_co2_from_o2(self) -> bool:
        query = f'''
            from(bucket: "{self.db.bucket}")
            |> range(start: -10y)
            |> filter(fn: (r) => r._measurement == "{SETTINGS_MEASUREMENT}")
            |> filter(fn: (r) => r._field == "use_co2_from_o2")
            |> last()
        '''
        rows = await self.db.query(query)
        return bool(rows[0]["_value"]) if rows else False

    async def set_co2_from_o2(self, enabled: bool) -> None:
        point = Point(SETTINGS_MEASUREMENT).field("use_co2_from_o2", bool(enabled)).time(get_current_time())
        await self.db.write([point])
