# file: backend/runner.py

import math
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

from backend.channels import (
    CO_SOFT_CAP,
    COMPLETE_DISPLAY_S,
    SAMPLE_COUNT,
    SAMPLE_INTERVAL_S,
    GasChannel,
    Grouping,
)
from backend.correction import CalibrationStore, CorrectionApplier, DerivedFromComplement
from backend.evaluator import Evaluation, evaluate
from backend.exceptions import (
    CalibrationError,
    CaptureFailed,
    InvalidReference,
    PersistFailed,
    RunInProgress,
    SensorUnavailable,
    StoreError,
)
from backend.models import CalibrationRecord, ChannelResult, RunStatus
from backend.utils import get_current_time


class SensorSource(Protocol):
    async def current_reading(self) -> Dict[GasChannel, float]: ...


class RunState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    COMPUTING = "computing"
    COMPLETE = "complete"


@dataclass
class RunEvent:
    kind: str  # progress, completed or failed
    grouping: Grouping
    collected: int = 0
    total: int = SAMPLE_COUNT
    results: Dict[GasChannel, Evaluation] = field(default_factory = dict)
    error: Optional[CalibrationError] = None


Listener = Callable[[RunEvent], None]


def validate_references(grouping: Grouping, references: Mapping[GasChannel, Any]) -> Dict[GasChannel, float]:
    """Return a float reference for every channel of the grouping or raise InvalidReference."""
    validated = {}
    for channel in grouping.channels:
        try:
            value = float(references.get(channel))
        except (TypeError, ValueError):
            value = math.nan
        if math.isnan(value):
            raise InvalidReference(f"Please set {channel.value} reference value before starting calibration")
        validated[channel] = value
    return validated


class CalibrationRun:
    """In-memory state of one calibration run; never persisted."""

    def __init__(self, grouping: Grouping, references: Optional[Dict[GasChannel, float]] = None):
        self.grouping = grouping
        self.references = dict(references or {})
        self.state = RunState.IDLE
        self.total = SAMPLE_COUNT
        self.collected = 0
        self.samples: Dict[GasChannel, List[float]] = {channel: [] for channel in grouping.channels}
        self.results: Dict[GasChannel, Evaluation] = {}
        self.error: Optional[CalibrationError] = None
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None
        self.finished = asyncio.Event()

    @property
    def active(self) -> bool:
        return self.state in (RunState.CALIBRATING, RunState.COMPUTING)

    def cancel(self) -> None:
        """Stop the run task together with any pending sampling or display timer."""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> Dict[GasChannel, Evaluation]:
        """Wait for the outcome; the complete-to-idle display delay is not awaited."""
        await self.finished.wait()
        if self.cancelled:
            raise asyncio.CancelledError()
        if self.error is not None:
            raise self.error
        return self.results

    def status(self) -> RunStatus:
        return RunStatus(
            grouping = self.grouping,
            state = self.state.value,
            collected = self.collected,
            total = self.total,
            progress = 100.0 * self.collected / self.total,
            latest = {channel.field: values[-1] for channel, values in self.samples.items() if values},
            results = {
                channel.value: ChannelResult(
                    reference_value = self.references[channel],
                    average = result.average,
                    t_value = result.t_value,
                    passed = result.passed,
                    correction_slope = result.slope,
                    correction_intercept = result.intercept,
                )
                for channel, result in self.results.items()
            },
            error = str(self.error) if self.error else None,
        )


class CalibrationRunner:
    """Drives timed sampling, evaluation and persistence, one run per grouping at a time."""

    def __init__(self, source: SensorSource, store: CalibrationStore,
                 applier: Optional[CorrectionApplier] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.source = source
        self.store = store
        self.applier = applier
        self.sleep = sleep
        self.runs: Dict[Grouping, CalibrationRun] = {grouping: CalibrationRun(grouping) for grouping in Grouping}
        self.listeners: List[Listener] = []

    @property
    def derives_co2(self) -> bool:
        return self.applier is not None and self.applier.use_co2_from_o2

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def status(self, grouping: Grouping) -> CalibrationRun:
        return self.runs[grouping]

    def start(self, grouping: Grouping, references: Mapping[GasChannel, Any]) -> CalibrationRun:
        current = self.runs[grouping]
        if current.active:
            raise RunInProgress(f"{grouping.value} calibration is already running")
        validated = validate_references(grouping, references)
        # a finished run may still be showing its results
        current.cancel()

        run = CalibrationRun(grouping, validated)
        run.state = RunState.CALIBRATING
        run.task = asyncio.create_task(self._drive(run))
        self.runs[grouping] = run
        logging.info(f"Started {grouping.value} calibration: capturing {run.total} readings every {SAMPLE_INTERVAL_S}s")
        return run

    async def run(self, grouping: Grouping, references: Mapping[GasChannel, Any]) -> Dict[GasChannel, Evaluation]:
        return await self.start(grouping, references).wait()

    def reset(self, grouping: Grouping) -> CalibrationRun:
        """Discard the grouping's run, cancelling it if it is still in progress."""
        self.runs[grouping].cancel()
        self.runs[grouping] = CalibrationRun(grouping)
        logging.info(f"Reset {grouping.value} calibration")
        return self.runs[grouping]

    async def shutdown(self) -> None:
        tasks = [run.task for run in self.runs.values() if run.task is not None and not run.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions = True)

    def _emit(self, event: RunEvent) -> None:
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                logging.error(f"Calibration listener failed on {event.kind} event: {e}")

    async def _drive(self, run: CalibrationRun) -> None:
        try:
            results = await self._execute(run)
        except asyncio.CancelledError:
            run.state = RunState.IDLE
            run.cancelled = True
            run.finished.set()
            logging.info(f"{run.grouping.value} calibration cancelled after {run.collected} readings")
            raise
        except CalibrationError as e:
            self._fail(run, e)
            return
        except Exception as e:
            logging.error(f"Unexpected error during {run.grouping.value} calibration: {e}")
            self._fail(run, CalibrationError(f"Unexpected error: {e}"))
            return

        run.results = results
        run.state = RunState.COMPLETE
        run.finished.set()
        verdicts = ", ".join(f"{channel.value} t={result.t_value:.3f} {'passed' if result.passed else 'failed'}"
                             for channel, result in results.items())
        logging.info(f"{run.grouping.value} calibration complete: {verdicts}")
        self._emit(RunEvent("completed", run.grouping, run.collected, run.total, results = dict(results)))
        try:
            await self.sleep(COMPLETE_DISPLAY_S)
        finally:
            run.state = RunState.IDLE

    def _fail(self, run: CalibrationRun, error: CalibrationError) -> None:
        run.error = error
        run.state = RunState.IDLE
        run.finished.set()
        logging.error(f"{run.grouping.value} calibration failed: {error}")
        self._emit(RunEvent("failed", run.grouping, run.collected, run.total, error = error))

    async def _execute(self, run: CalibrationRun) -> Dict[GasChannel, Evaluation]:
        channels = run.grouping.channels
        names = "/".join(channel.value for channel in channels)

        for index in range(run.total):
            try:
                reading = await self.source.current_reading()
            except SensorUnavailable as e:
                raise CaptureFailed(f"Failed to capture {names} sensor data at reading {index + 1}/{run.total}: {e}") from e

            for channel in channels:
                value = float(reading[channel])
                if channel is GasChannel.CO:
                    value = min(value, CO_SOFT_CAP)
                elif channel is GasChannel.CO2 and self.derives_co2:
                    value = DerivedFromComplement().apply(value, float(reading[GasChannel.O2]))
                run.samples[channel].append(value)
            run.collected = index + 1
            self._emit(RunEvent("progress", run.grouping, run.collected, run.total))

            if index < run.total - 1:
                await self.sleep(SAMPLE_INTERVAL_S)

        run.state = RunState.COMPUTING
        results = {}
        for channel in channels:
            readings = list(run.samples[channel])
            result = evaluate(readings, run.references[channel])
            record = CalibrationRecord(
                gas_type = channel,
                reference_value = run.references[channel],
                readings = readings,
                average = result.average,
                t_value = result.t_value,
                passed = result.passed,
                correction_slope = result.slope,
                correction_intercept = result.intercept,
                updated_at = get_current_time(),
            )
            try:
                await self.store.upsert(record)
            except StoreError as e:
                # channels already written stay written
                raise PersistFailed(f"Failed to save {channel.value} calibration: {e}", channel) from e
            results[channel] = result

        if self.applier is not None:
            await self.applier.refresh()
        return results
