from __future__ import annotations

import logging
from typing import Iterable

from selenium.common.exceptions import WebDriverException

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.dom_monitor import DomMonitor
from reviewpin.core.exceptions import ObserverSetupFailure
from reviewpin.core.history import HistoryInterceptor, HistoryLease
from reviewpin.core.metadata import Signal, SignalKind

log = logging.getLogger(__name__)


class ChangeWatcher:
    """Turns raw page events for one tracker into re-evaluation signals."""

    def __init__(
        self,
        channel_id: str,
        monitor: DomMonitor,
        history: HistoryInterceptor,
        settings: TrackingSettings,
    ) -> None:
        self.channel_id = channel_id
        self.monitor = monitor
        self.history = history
        self.settings = settings
        self._lease: HistoryLease | None = None
        self._installed = False

    @property
    def active(self) -> bool:
        return self._installed

    def start(self) -> None:
        """Installs observers and takes a history lease.

        Raises ``ObserverSetupFailure`` without holding any resources when
        the page cannot create observers.
        """

        self.monitor.install(self.channel_id)
        self._installed = True
        try:
            self._lease = self.history.acquire()
        except WebDriverException as exc:
            self.stop()
            raise ObserverSetupFailure(f"Could not intercept navigation for {self.channel_id}: {exc.msg}") from exc

    def reinstall(self) -> None:
        self.monitor.install(self.channel_id)
        try:
            self.history.reinstall()
        except WebDriverException as exc:
            raise ObserverSetupFailure(f"Could not intercept navigation for {self.channel_id}: {exc.msg}") from exc

    def focus(self, element) -> None:
        if self._installed:
            self.monitor.focus(self.channel_id, element)

    def classify(self, events: Iterable[dict]) -> list[Signal]:
        watched = set(self.settings.watched_attributes)
        signals: list[Signal] = []
        for event in events:
            event_type = event.get("type")
            if event_type in ("scroll", "resize"):
                signals.append(Signal(SignalKind.REEVALUATE, event_type))
            elif event_type == "childList":
                signals.append(Signal(SignalKind.REEVALUATE, "childList"))
            elif event_type == "attributes":
                if event.get("touchesTarget") and event.get("attributeName") in watched:
                    signals.append(Signal(SignalKind.REEVALUATE, f"attributes:{event['attributeName']}"))
            elif event_type == "intersection":
                entering = bool(event.get("isIntersecting")) and float(event.get("ratio", 0.0)) > 0
                signals.append(Signal(SignalKind.VISIBILITY, "intersection", entering=entering))
            elif event_type == "navigation":
                signals.append(Signal(SignalKind.NAVIGATE, event.get("kind", "navigation")))
            else:
                log.debug("Ignoring unknown page event %r", event_type)
        return signals

    def stop(self) -> None:
        """Disconnects observers and releases the history lease; safe to call twice."""

        if self._installed:
            self._installed = False
            try:
                self.monitor.teardown(self.channel_id)
            except WebDriverException as exc:
                log.debug("Channel %s teardown skipped, page unavailable: %s", self.channel_id, exc.msg)
        if self._lease is not None:
            lease, self._lease = self._lease, None
            try:
                lease.release()
            except WebDriverException as exc:
                log.debug("History restore skipped, page unavailable: %s", exc.msg)
