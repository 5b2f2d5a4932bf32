"""Watcher registry: resolves live-sign tokens to watchers."""

from __future__ import annotations

import hmac
import logging
from enum import StrEnum

from core.alerting.receivers import Receiver, build_receivers
from core.config import Config, ConfigError
from core.monitoring.watcher import Watcher, WatcherStatus

logger = logging.getLogger(__name__)


class LiveSignResult(StrEnum):
    ACCEPTED = "accepted"
    UNKNOWN_TOKEN = "unknown_token"


class WatcherRegistry:
    """Holds every watcher of the process and routes live signs to them."""

    def __init__(self, watchers: list[Watcher]):
        self.watchers = watchers
        self.started = False

    def start_all(self) -> None:
        if self.started:
            logger.warning("Watchers already started")
            return
        for watcher in self.watchers:
            watcher.start()
        self.started = True
        logger.info(f"Started {len(self.watchers)} watcher(s)")

    async def stop_all(self) -> None:
        for watcher in self.watchers:
            await watcher.stop()

    def find(self, token: str) -> Watcher | None:
        """Constant-time token lookup.

        Every watcher's token is compared, even after a match, so the time
        taken does not reveal which (or whether any) token matched.
        """
        candidate = token.encode()
        found: Watcher | None = None
        for watcher in self.watchers:
            if hmac.compare_digest(watcher.token.encode(), candidate):
                found = watcher
        return found

    async def handle_live_sign(self, token: str) -> LiveSignResult:
        watcher = self.find(token)
        if watcher is None:
            return LiveSignResult.UNKNOWN_TOKEN
        await watcher.handle_live_sign()
        logger.debug(f"Live sign accepted for app {watcher.name}")
        return LiveSignResult.ACCEPTED

    def statuses(self) -> list[WatcherStatus]:
        return [watcher.status() for watcher in self.watchers]


def build_registry(
    config: Config,
    receivers: dict[str, Receiver] | None = None,
) -> WatcherRegistry:
    """Create (but do not start) one watcher per configured app."""
    if receivers is None:
        receivers = build_receivers(config.receivers)

    watchers: list[Watcher] = []
    for app in config.apps:
        app_receivers: list[Receiver] = []
        for receiver_name in app.notify:
            receiver = receivers.get(receiver_name)
            if receiver is None:
                raise ConfigError(
                    f'app "{app.name}": receiver "{receiver_name}" does not exist'
                )
            app_receivers.append(receiver)
        watchers.append(Watcher(app, app_receivers))

    return WatcherRegistry(watchers)
