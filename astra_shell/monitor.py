"""Sentry: periodic background monitoring independent of request cancellation."""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

import psutil

from astra_shell.logging import get_logger

log = get_logger(__name__)


class PeriodicTask:
    """Run a check every `interval` seconds until stopped.

    Owns its own stop event, so cancelling a user request never stops it and
    stopping it never touches a request.
    """

    def __init__(
        self,
        name: str,
        check: Callable[[], Any | Awaitable[Any]],
        interval: float,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.check = check
        self.interval = float(interval)
        self.runs = 0
        self.errors = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"sentry:{self.name}")
        log.info("Periodic task started", task=self.name, interval=self.interval)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=self.interval + 1.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.info("Periodic task stopped", task=self.name, runs=self.runs)

    async def run_once(self) -> None:
        try:
            outcome = self.check()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.errors += 1
            log.error("Periodic check failed", task=self.name, error=str(e))
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue


@dataclass
class ResourceAlert:
    metric: str
    value: float
    threshold: float
    at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def describe(self) -> str:
        return f"{self.metric} at {self.value:.1f}% (threshold {self.threshold:.1f}%)"


class ResourceSentry:
    """Sample host CPU/memory and keep alerts for readings over thresholds."""

    def __init__(
        self,
        cpu_threshold: float = 90.0,
        memory_threshold: float = 90.0,
        max_alerts: int = 50,
        sampler: Callable[[], dict[str, float]] | None = None,
        on_alert: Callable[[ResourceAlert], None] | None = None,
    ):
        self.cpu_threshold = cpu_threshold
        self.memory_threshold = memory_threshold
        self.sampler = sampler or self._sample
        self.on_alert = on_alert
        self.alerts: deque[ResourceAlert] = deque(maxlen=max_alerts)
        self.last_sample: dict[str, float] = {}

    @staticmethod
    def _sample() -> dict[str, float]:
        return {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_percent": psutil.virtual_memory().percent,
        }

    def check(self) -> list[ResourceAlert]:
        sample = self.sampler()
        self.last_sample = dict(sample)
        raised: list[ResourceAlert] = []
        for metric, threshold in (
            ("cpu_percent", self.cpu_threshold),
            ("memory_percent", self.memory_threshold),
        ):
            value = float(sample.get(metric, 0.0))
            if value >= threshold:
                alert = ResourceAlert(metric, value, threshold)
                self.alerts.append(alert)
                raised.append(alert)
                log.warning("Resource threshold exceeded", metric=metric, value=value, threshold=threshold)
                if self.on_alert:
                    self.on_alert(alert)
        return raised

    def as_task(self, interval: float) -> PeriodicTask:
        return PeriodicTask("resources", self.check, interval)
