from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.exceptions import ObserverSetupFailure, TrackerStateError
from reviewpin.core.metadata import (
    AnchorDescriptor,
    Point,
    Resolution,
    ResolutionOutcome,
    Signal,
    SignalKind,
    TrackedState,
)
from reviewpin.core.position import compute_position, fallback_point
from reviewpin.core.resolver import IdentityResolver
from reviewpin.core.watcher import ChangeWatcher
from reviewpin.utils.timers import Scheduler, TimerHandle

log = logging.getLogger(__name__)

ChangeCallback = Callable[[str, TrackedState], None]


class TrackerPhase(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    TORN_DOWN = "torn_down"


class Tracker:
    """Keeps one comment's marker position and visibility current.

    Every trigger funnels into a single pending evaluation slot, so at
    most one evaluation is queued per tracker and the latest trigger
    decides when it runs. Teardown cancels all timers and observers.
    """

    def __init__(
        self,
        comment_id: str,
        descriptor: AnchorDescriptor,
        *,
        driver,
        resolver: IdentityResolver,
        watcher: ChangeWatcher,
        scheduler: Scheduler,
        settings: TrackingSettings,
        on_change: ChangeCallback | None = None,
        audit_logger=None,
        artifact_manager=None,
    ) -> None:
        self.comment_id = comment_id
        self.descriptor = descriptor
        self.driver = driver
        self.resolver = resolver
        self.watcher = watcher
        self.scheduler = scheduler
        self.settings = settings
        self.on_change = on_change
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager
        self.state = TrackedState()
        self.phase = TrackerPhase.IDLE
        self.evaluations = 0
        self._pending: TimerHandle | None = None
        self._sweep: TimerHandle | None = None
        self._last_live: bool | None = None

    @property
    def channel_id(self) -> str:
        return self.watcher.channel_id

    @property
    def has_pending_evaluation(self) -> bool:
        return self._pending is not None and self._pending.active

    def start(self) -> TrackedState:
        if self.phase is not TrackerPhase.IDLE:
            raise TrackerStateError(f"Tracker for {self.comment_id} cannot start from {self.phase.value}")
        try:
            self.watcher.start()
        except ObserverSetupFailure:
            log.error("Continuous tracking unavailable for comment %s", self.comment_id)
            self.evaluate()
            self.teardown()
            raise
        self.phase = TrackerPhase.OBSERVING
        self.evaluate()
        self._sweep = self.scheduler.call_every(self.settings.sweep_interval_seconds, self._sweep_tick)
        return self.state

    def teardown(self) -> None:
        if self.phase is TrackerPhase.TORN_DOWN:
            return
        self.phase = TrackerPhase.TORN_DOWN
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._sweep is not None:
            self._sweep.cancel()
            self._sweep = None
        self.watcher.stop()

    def handle_events(self, events: list[dict]) -> None:
        if self.phase is not TrackerPhase.OBSERVING:
            return
        for signal in self.watcher.classify(events):
            self.handle_signal(signal)

    def handle_signal(self, signal: Signal) -> None:
        if self.phase is not TrackerPhase.OBSERVING:
            return
        if signal.kind is SignalKind.REEVALUATE:
            self.schedule(self.settings.debounce_seconds)
        elif signal.kind is SignalKind.NAVIGATE:
            self.schedule(self.settings.navigation_settle_seconds)
        elif signal.kind is SignalKind.VISIBILITY:
            if self.state.is_live:
                self._apply(self.state.position, bool(signal.entering))
            if signal.entering:
                self.schedule(self.settings.debounce_seconds)

    def schedule(self, delay: float) -> None:
        """Replaces any pending evaluation with one ``delay`` seconds out.

        A pending navigation-settle evaluation is never pulled earlier.
        """

        due = self.scheduler.now() + delay
        if self._pending is not None and self._pending.active:
            due = max(due, self._pending.due)
            self._pending.cancel()
        self._pending = self.scheduler.call_at(due, self._run_pending)

    def recover_channel(self) -> None:
        """Re-installs observers after the page replaced its document."""

        if self.phase is not TrackerPhase.OBSERVING:
            return
        try:
            self.watcher.reinstall()
        except ObserverSetupFailure:
            log.error("Lost continuous tracking for comment %s after reload", self.comment_id)
            self.teardown()
            raise
        self.schedule(self.settings.navigation_settle_seconds)

    def live_element(self):
        """Looks the element up again; never served from a cache."""

        return self.resolver.resolve(self.descriptor).element

    def evaluate(self) -> TrackedState:
        self.evaluations += 1
        resolution = self.resolver.resolve(self.descriptor)
        reading = None
        if resolution.found:
            reading = compute_position(self.driver, resolution.element, self.descriptor.click_offset)
            if reading is None:
                # Detached between lookup and measurement.
                resolution = Resolution(outcome=ResolutionOutcome.NOT_FOUND, invalid_locators=resolution.invalid_locators)
        live = reading is not None

        if live:
            position: Point | None = reading.point
            visible = reading.visible
        else:
            position = fallback_point(self.driver, self.descriptor) or self.state.position
            visible = False

        self.state.is_live = live
        self.state.resolved_tier = resolution.tier if live else None
        if self.phase is TrackerPhase.OBSERVING:
            self.watcher.focus(resolution.element if live else None)
        self._record_transition(live, resolution)
        self._apply(position, visible)
        return self.state

    def _run_pending(self) -> None:
        self._pending = None
        if self.phase is TrackerPhase.OBSERVING:
            self.evaluate()

    def _sweep_tick(self) -> None:
        if self.phase is not TrackerPhase.OBSERVING:
            return
        if self.resolver.resolve(self.descriptor).found != self.state.is_live:
            log.debug("Sweep found stale liveness for comment %s", self.comment_id)
            self.evaluate()

    def _apply(self, position: Point | None, visible: bool) -> None:
        if position == self.state.position and visible == self.state.is_visible:
            return
        self.state.position = position
        self.state.is_visible = visible
        if self.on_change is not None:
            self.on_change(self.comment_id, self.state)

    def _record_transition(self, live: bool, resolution: Resolution) -> None:
        if live == self._last_live:
            return
        previous, self._last_live = self._last_live, live
        if live:
            transition = "acquired" if previous is None else "recovered"
            log.info("Comment %s anchored via %s", self.comment_id, resolution.tier.value)
        else:
            transition = "lost"
            log.info("Comment %s lost its anchor (%s)", self.comment_id, resolution.outcome.value)
        if self.audit_logger is None:
            return
        artifact_paths: dict[str, str] = {}
        if not live and self.artifact_manager is not None:
            artifact_paths = self.artifact_manager.capture_page(self.driver, self.comment_id)
        self.audit_logger.write_transition(
            self.comment_id,
            transition=transition,
            resolution=resolution,
            url=self._current_url(),
            artifact_paths=artifact_paths,
        )

    def _current_url(self) -> str:
        return getattr(self.driver, "current_url", "") or ""
