import asyncio
import math

import pytest

from backend.channels import CO_SOFT_CAP, COMPLETE_DISPLAY_S, SAMPLE_COUNT, SAMPLE_INTERVAL_S, GasChannel, Grouping
from backend.correction import CorrectionApplier
from backend.exceptions import CaptureFailed, InvalidReference, PersistFailed, RunInProgress
from backend.runner import CalibrationRunner, RunState

from conftest import MemoryCalibrationStore, MemorySettingsStore, ScriptedSensorSource


async def settle(run):
    """Let the run task finish its display delay."""
    await asyncio.wait_for(asyncio.shield(run.task), timeout = 1)


async def test_co_run_persists_full_record(runner, store, sleep):
    results = await runner.run(Grouping.CO, {GasChannel.CO: 400.0})

    result = results[GasChannel.CO]
    assert result.t_value == 0
    assert result.passed is True
    assert result.slope == pytest.approx(400.0 / 410.0)

    record = store.records[GasChannel.CO]
    assert record.readings == [410.0] * SAMPLE_COUNT
    assert record.reference_value == 400.0
    assert record.average == 410.0
    assert record.t_value == 0
    assert record.passed is True
    assert record.correction_slope == pytest.approx(0.9756, abs = 1e-4)
    assert record.correction_intercept == 0
    assert record.updated_at is not None
    assert len(store.writes) == 1


async def test_sampling_is_timed_sequentially(runner, source, sleep):
    run = runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    await run.wait()
    await settle(run)

    assert source.calls == SAMPLE_COUNT
    # first sample is immediate, then one interval between each of the rest
    assert sleep.delays[:SAMPLE_COUNT - 1] == [SAMPLE_INTERVAL_S] * (SAMPLE_COUNT - 1)
    assert sleep.delays[SAMPLE_COUNT - 1:] == [COMPLETE_DISPLAY_S]


async def test_state_reverts_to_idle_after_completion(runner):
    run = runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    assert run.state == RunState.CALIBRATING

    await run.wait()
    assert run.state == RunState.COMPLETE
    assert run.status().results["CO"].passed is True

    await settle(run)
    assert run.state == RunState.IDLE
    assert runner.status(Grouping.CO) is run


async def test_progress_events_after_each_sample(runner):
    events = []
    runner.add_listener(events.append)

    await runner.run(Grouping.CO, {GasChannel.CO: 400.0})

    progress = [(event.collected, event.total) for event in events if event.kind == "progress"]
    assert progress == [(i, SAMPLE_COUNT) for i in range(1, SAMPLE_COUNT + 1)]
    completed = [event for event in events if event.kind == "completed"]
    assert len(completed) == 1
    assert completed[0].results[GasChannel.CO].passed is True


async def test_co_samples_are_clamped(store, applier, sleep):
    runner = CalibrationRunner(ScriptedSensorSource(co = 2600.0), store, applier, sleep = sleep)

    results = await runner.run(Grouping.CO, {GasChannel.CO: 1900.0})

    assert store.records[GasChannel.CO].readings == [CO_SOFT_CAP] * SAMPLE_COUNT
    assert max(store.records[GasChannel.CO].readings) <= CO_SOFT_CAP
    assert results[GasChannel.CO].average == CO_SOFT_CAP


async def test_joint_run_samples_co2_and_o2_from_one_fetch(store, applier, sleep):
    source = ScriptedSensorSource(co2 = 0.05, o2 = 20.8)
    runner = CalibrationRunner(source, store, applier, sleep = sleep)

    results = await runner.run(Grouping.CO2_O2, {GasChannel.CO2: 0.05, GasChannel.O2: 20.9})

    assert source.calls == SAMPLE_COUNT
    assert set(results) == {GasChannel.CO2, GasChannel.O2}
    assert store.records[GasChannel.CO2].readings == [0.05] * SAMPLE_COUNT
    assert store.records[GasChannel.O2].readings == [20.8] * SAMPLE_COUNT
    assert store.records[GasChannel.O2].correction_slope == pytest.approx(20.9 / 20.8)
    assert GasChannel.CO not in store.records


async def test_joint_run_samples_derived_co2_when_enabled(store, sleep):
    applier = CorrectionApplier(store, MemorySettingsStore(True))
    await applier.refresh()
    source = ScriptedSensorSource(co2 = 0.04, o2 = 20.5)
    runner = CalibrationRunner(source, store, applier, sleep = sleep)

    results = await runner.run(Grouping.CO2_O2, {GasChannel.CO2: 0.4, GasChannel.O2: 20.9})

    assert store.records[GasChannel.CO2].readings == pytest.approx([0.40] * SAMPLE_COUNT)
    assert store.records[GasChannel.O2].readings == [20.5] * SAMPLE_COUNT
    assert results[GasChannel.CO2].average == pytest.approx(0.40)


async def test_completed_run_refreshes_correction_cache(runner, applier):
    assert applier.correct(GasChannel.CO, 410.0, True) == 410.0

    await runner.run(Grouping.CO, {GasChannel.CO: 400.0})

    assert applier.correct(GasChannel.CO, 410.0, True) == pytest.approx(400.0)


@pytest.mark.parametrize("reference", [math.nan, None, "abc", ""])
async def test_invalid_reference_never_starts(runner, source, reference):
    with pytest.raises(InvalidReference):
        runner.start(Grouping.CO, {GasChannel.CO: reference})

    assert runner.status(Grouping.CO).state == RunState.IDLE
    assert runner.status(Grouping.CO).task is None
    assert source.calls == 0


async def test_joint_run_requires_both_references(runner):
    with pytest.raises(InvalidReference, match = "O2"):
        runner.start(Grouping.CO2_O2, {GasChannel.CO2: 0.04, GasChannel.O2: math.nan})

    assert runner.status(Grouping.CO2_O2).state == RunState.IDLE


async def test_second_start_is_rejected_while_active(store, applier):
    gate = asyncio.Event()

    async def blocking_sleep(delay):
        await gate.wait()

    runner = CalibrationRunner(ScriptedSensorSource(), store, applier, sleep = blocking_sleep)
    run = runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    await asyncio.sleep(0)

    with pytest.raises(RunInProgress):
        runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    # the other grouping is independent
    other = runner.start(Grouping.CO2_O2, {GasChannel.CO2: 0.04, GasChannel.O2: 20.9})

    await runner.shutdown()
    assert run.state == RunState.IDLE
    assert other.state == RunState.IDLE


async def test_capture_failure_aborts_without_writing(store, applier, sleep):
    previous = store.records[GasChannel.CO] = (await _passed_record(store, applier, sleep))
    store.writes.clear()
    source = ScriptedSensorSource(fail_at = 15)
    runner = CalibrationRunner(source, store, applier, sleep = sleep)
    events = []
    runner.add_listener(events.append)

    with pytest.raises(CaptureFailed) as info:
        await runner.run(Grouping.CO, {GasChannel.CO: 100.0})

    assert info.value.stage == "capture"
    assert "15/30" in str(info.value)
    assert runner.status(Grouping.CO).state == RunState.IDLE
    assert runner.status(Grouping.CO).status().error.startswith("capture")
    assert store.writes == []
    assert store.records[GasChannel.CO] is previous
    assert events[-1].kind == "failed"
    assert isinstance(events[-1].error, CaptureFailed)


async def _passed_record(store, applier, sleep):
    runner = CalibrationRunner(ScriptedSensorSource(), store, applier, sleep = sleep)
    await runner.run(Grouping.CO, {GasChannel.CO: 410.0})
    return store.records[GasChannel.CO]


async def test_persist_failure_keeps_earlier_channel(applier, sleep):
    store = MemoryCalibrationStore(fail_on = GasChannel.O2)
    runner = CalibrationRunner(ScriptedSensorSource(), store, applier, sleep = sleep)

    with pytest.raises(PersistFailed) as info:
        await runner.run(Grouping.CO2_O2, {GasChannel.CO2: 0.04, GasChannel.O2: 20.9})

    assert info.value.channel == GasChannel.O2
    assert GasChannel.CO2 in store.records
    assert GasChannel.O2 not in store.records
    assert runner.status(Grouping.CO2_O2).state == RunState.IDLE


async def test_reset_cancels_pending_timers(store, applier):
    gate = asyncio.Event()

    async def blocking_sleep(delay):
        await gate.wait()

    source = ScriptedSensorSource()
    runner = CalibrationRunner(source, store, applier, sleep = blocking_sleep)
    run = runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    await asyncio.sleep(0)
    assert run.collected == 1

    fresh = runner.reset(Grouping.CO)
    with pytest.raises(asyncio.CancelledError):
        await run.wait()

    assert run.task.cancelled()
    assert fresh.state == RunState.IDLE
    assert runner.status(Grouping.CO) is fresh
    assert source.calls == 1
    assert store.writes == []


async def test_restart_after_completion(runner, store):
    first = runner.start(Grouping.CO, {GasChannel.CO: 400.0})
    await first.wait()

    second = runner.start(Grouping.CO, {GasChannel.CO: 410.0})
    await second.wait()

    assert first.state == RunState.IDLE
    assert store.records[GasChannel.CO].reference_value == 410.0
    assert len(store.writes) == 2
