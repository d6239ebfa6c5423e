import asyncio

import pytest

from astra_shell.monitor import PeriodicTask, ResourceSentry


def test_sentry_records_alerts_over_thresholds():
    readings = iter([
        {"cpu_percent": 95.0, "memory_percent": 40.0},
        {"cpu_percent": 10.0, "memory_percent": 40.0},
        {"cpu_percent": 99.0, "memory_percent": 97.0},
    ])
    seen = []
    sentry = ResourceSentry(
        cpu_threshold=90,
        memory_threshold=90,
        sampler=lambda: next(readings),
        on_alert=seen.append,
    )

    assert [a.metric for a in sentry.check()] == ["cpu_percent"]
    assert sentry.check() == []
    assert [a.metric for a in sentry.check()] == ["cpu_percent", "memory_percent"]
    assert len(sentry.alerts) == 3
    assert seen[0].describe() == "cpu_percent at 95.0% (threshold 90.0%)"


def test_sentry_alert_history_is_bounded():
    sentry = ResourceSentry(
        cpu_threshold=0,
        memory_threshold=101,
        max_alerts=2,
        sampler=lambda: {"cpu_percent": 5.0, "memory_percent": 5.0},
    )
    for _ in range(5):
        sentry.check()

    assert len(sentry.alerts) == 2


def test_sentry_samples_real_host_by_default():
    sentry = ResourceSentry(cpu_threshold=101, memory_threshold=101)

    assert sentry.check() == []
    assert set(sentry.last_sample) == {"cpu_percent", "memory_percent"}


@pytest.mark.asyncio
async def test_periodic_task_runs_until_stopped():
    calls = []
    task = PeriodicTask("heartbeat", lambda: calls.append(1), interval=0.01)

    task.start()
    await asyncio.sleep(0.08)
    await task.stop()

    count = len(calls)
    assert count >= 2
    assert task.running is False
    await asyncio.sleep(0.03)
    assert len(calls) == count


@pytest.mark.asyncio
async def test_periodic_task_survives_failing_checks():
    async def _broken():
        raise RuntimeError("sensor offline")

    task = PeriodicTask("broken", _broken, interval=0.01)

    await task.run_once()
    await task.run_once()

    assert task.runs == 2
    assert task.errors == 2


def test_periodic_task_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PeriodicTask("bad", lambda: None, interval=0)
