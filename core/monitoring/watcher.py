"""Dead man's switch watcher: one liveness state machine per monitored app."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from prometheus_client import Counter, Gauge

from core.alerting.receivers import NotificationKind, Receiver
from core.config import AppConfig
from otel_init import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

NOTIFICATIONS = Counter(
    "notdeadyet_notifications_total",
    "Notifications handed to receivers",
    ["app", "receiver", "kind", "outcome"],
)
APP_UP = Gauge(
    "notdeadyet_app_up",
    "1 while the app keeps sending live signs, 0 once its timeout was exceeded",
    ["app"],
)


@dataclass(slots=True)
class WatcherStatus:
    """Snapshot of a watcher, for status reporting."""

    name: str
    alive: bool
    last_live_sign: datetime
    timeout: timedelta
    repeat_interval: timedelta


class Watcher:
    """Watches one app and alerts its receivers when live signs stop.

    The monitoring loop waits for ``timeout`` while the app is alive and for
    ``repeat_interval`` while it is dead. Every expiry sends a down
    notification; a live sign received while dead sends one back
    notification. Notifications run as background tasks so a slow receiver
    never delays the loop or the caller of ``handle_live_sign``.
    """

    def __init__(
        self,
        app: AppConfig,
        receivers: list[Receiver],
        *,
        clock: Any = time.time,
    ):
        self.app = app
        self.receivers = receivers
        self.timeout = app.timeout.total_seconds()
        self.repeat_interval = app.repeat_interval.total_seconds()
        self.clock = clock

        self.last_live_sign: float = float(clock())
        self.timeout_exceeded = False

        self._lock = asyncio.Lock()
        self._live_sign = asyncio.Event()
        # Bumped on every accepted live sign; an expiry is only acted on if
        # no live sign was recorded since the wait was armed.
        self._generation = 0

        self._task: asyncio.Task[None] | None = None
        self._notifications: set[asyncio.Task[None]] = set()
        self.logger = logging.LoggerAdapter(logger, {"app": app.name})

    @property
    def name(self) -> str:
        return self.app.name

    @property
    def token(self) -> str:
        return self.app.token

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            self.logger.warning(f"Watcher for {self.name} already started")
            return
        self.logger.info(f"Watching app {self.name}...")
        APP_UP.labels(app=self.name).set(1)
        self._task = asyncio.create_task(self._watch(), name=f"watch:{self.name}")

    async def stop(self) -> None:
        """Cancel the loop and any in-flight notifications (shutdown only)."""
        tasks = list(self._notifications)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._notifications.clear()

    async def handle_live_sign(self) -> None:
        async with self._lock:
            self.last_live_sign = float(self.clock())
            self._generation += 1
            self._live_sign.set()

            if not self.timeout_exceeded:
                return

            self.logger.info(f"App {self.name} has risen from the dead, welcome back!")
            self.timeout_exceeded = False
            APP_UP.labels(app=self.name).set(1)

        self._spawn(self._notify_app_back())

    def status(self) -> WatcherStatus:
        return WatcherStatus(
            name=self.name,
            alive=not self.timeout_exceeded,
            last_live_sign=datetime.fromtimestamp(self.last_live_sign, UTC),
            timeout=self.app.timeout,
            repeat_interval=self.app.repeat_interval,
        )

    async def _watch(self) -> None:
        while True:
            async with self._lock:
                duration = (
                    self.repeat_interval if self.timeout_exceeded else self.timeout
                )
                self._live_sign.clear()
                generation = self._generation

            try:
                async with asyncio.timeout(duration):
                    await self._live_sign.wait()
                continue
            except TimeoutError:
                pass

            async with self._lock:
                if generation != self._generation:
                    # A live sign landed between expiry and here.
                    continue
                if not self.timeout_exceeded:
                    self.logger.info(
                        f"Timeout reached. App {self.name} has probably died."
                    )
                    self.timeout_exceeded = True
                    APP_UP.labels(app=self.name).set(0)
                downtime = timedelta(seconds=float(self.clock()) - self.last_live_sign)

            self._spawn(self._notify_app_down(downtime))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify_app_down(self, downtime: timedelta) -> None:
        self.logger.info(
            f"Notifying receivers that app {self.name} is (still) down "
            f"(downtime {downtime})"
        )
        await self._fan_out(
            NotificationKind.DOWN,
            lambda receiver: receiver.notify_app_down(self.name, downtime),
        )

    async def _notify_app_back(self) -> None:
        self.logger.info(f"Notifying receivers that app {self.name} is back")
        await self._fan_out(
            NotificationKind.BACK,
            lambda receiver: receiver.notify_app_back(self.name),
        )

    async def _fan_out(
        self,
        kind: NotificationKind,
        send: Callable[[Receiver], Awaitable[None]],
    ) -> None:
        with tracer.start_as_current_span("watcher.notify") as span:
            span.set_attribute("app.name", self.name)
            span.set_attribute("notification.kind", str(kind))
            failures = 0
            for receiver in self.receivers:
                try:
                    await send(receiver)
                except Exception as exc:
                    failures += 1
                    outcome = "failure"
                    self.logger.error(
                        f"Sending app {kind} notification via {receiver.name} "
                        f"failed: {exc}",
                        exc_info=True,
                    )
                else:
                    outcome = "success"
                NOTIFICATIONS.labels(
                    app=self.name,
                    receiver=receiver.name,
                    kind=str(kind),
                    outcome=outcome,
                ).inc()
            span.set_attribute("notification.receivers", len(self.receivers))
            span.set_attribute("notification.failures", failures)
