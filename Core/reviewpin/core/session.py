from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable

from reviewpin.config.schema import SuiteConfig
from reviewpin.core.capture import AnchorCapture
from reviewpin.core.comments import Comment
from reviewpin.core.dom_monitor import DomMonitor
from reviewpin.core.exceptions import ObserverSetupFailure
from reviewpin.core.history import HistoryInterceptor
from reviewpin.core.metadata import AnchorDescriptor, TrackedState
from reviewpin.core.picker import ElementPicker
from reviewpin.core.resolver import IdentityResolver
from reviewpin.core.tracker import ChangeCallback, Tracker
from reviewpin.core.watcher import ChangeWatcher
from reviewpin.logging.artifacts import ArtifactManager
from reviewpin.logging.audit import TrackingAuditLogger
from reviewpin.utils.timers import Scheduler

log = logging.getLogger(__name__)


class TrackingSession:
    """Owns every tracker running against one browser window.

    Page events are pulled with ``pump``; trackers, timers and observers
    all run on the caller's thread.
    """

    def __init__(
        self,
        driver,
        suite_config: SuiteConfig,
        *,
        scheduler: Scheduler | None = None,
        audit_logger: TrackingAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
        on_change: ChangeCallback | None = None,
    ) -> None:
        self.driver = driver
        self.suite_config = suite_config
        self.settings = suite_config.tracking
        self.scheduler = scheduler or Scheduler()
        self.audit_logger = audit_logger or TrackingAuditLogger(suite_config.artifacts.root)
        self.artifact_manager = artifact_manager or ArtifactManager(suite_config.artifacts.root)
        self.on_change = on_change
        self.resolver = IdentityResolver(driver, self.settings)
        self.monitor = DomMonitor(driver, self.settings)
        self.history = HistoryInterceptor(driver)
        self.capture = AnchorCapture(driver, self.settings, self.audit_logger)
        self.picker = ElementPicker(driver, self.settings)
        self.trackers: dict[str, Tracker] = {}
        self.failed: dict[str, Tracker] = {}
        self._anchor_keys: dict[str, tuple] = {}
        self._failed_keys: dict[str, tuple] = {}

    def __enter__(self) -> TrackingSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def track(self, comment_id: str, descriptor: AnchorDescriptor) -> Tracker:
        """Mounts a tracker; raises ``ObserverSetupFailure`` after one best-effort evaluation."""

        self.untrack(comment_id)
        watcher = ChangeWatcher(f"rp-{comment_id}-{uuid.uuid4().hex[:8]}", self.monitor, self.history, self.settings)
        tracker = Tracker(
            comment_id,
            descriptor,
            driver=self.driver,
            resolver=self.resolver,
            watcher=watcher,
            scheduler=self.scheduler,
            settings=self.settings,
            on_change=self.on_change,
            audit_logger=self.audit_logger,
            artifact_manager=self.artifact_manager if self.suite_config.artifacts.snapshot_on_loss else None,
        )
        try:
            tracker.start()
        except ObserverSetupFailure:
            self.failed[comment_id] = tracker
            raise
        self.failed.pop(comment_id, None)
        self.trackers[comment_id] = tracker
        return tracker

    def track_comment(self, comment: Comment) -> Tracker:
        try:
            tracker = self.track(comment.id, comment.to_descriptor())
        except ObserverSetupFailure:
            self._failed_keys[comment.id] = comment.anchor_key()
            raise
        self._anchor_keys[comment.id] = comment.anchor_key()
        return tracker

    def untrack(self, comment_id: str) -> None:
        tracker = self.trackers.pop(comment_id, None)
        self._anchor_keys.pop(comment_id, None)
        if tracker is not None:
            tracker.teardown()

    def sync(self, comments: Iterable[Comment]) -> None:
        """Matches the running trackers to the comments currently displayed.

        Trackers whose anchor fields changed are replaced; unchanged ones
        keep their state.
        """

        desired = {comment.id: comment for comment in comments}
        for comment_id in list(self.trackers):
            if comment_id not in desired:
                self.untrack(comment_id)
        for comment_id in list(self.failed):
            if comment_id not in desired:
                self.failed.pop(comment_id)
                self._failed_keys.pop(comment_id, None)
        for comment_id, comment in desired.items():
            key = comment.anchor_key()
            if comment_id in self.trackers and self._anchor_keys.get(comment_id) == key:
                continue
            if comment_id in self.failed and self._failed_keys.get(comment_id) == key:
                continue
            try:
                self.track_comment(comment)
            except ObserverSetupFailure as exc:
                log.error("Comment %s is shown at its last known position only: %s", comment_id, exc)

    def state(self, comment_id: str) -> TrackedState:
        tracker = self.trackers.get(comment_id) or self.failed.get(comment_id)
        if tracker is None:
            raise KeyError(f"Comment {comment_id} is not tracked")
        return tracker.state

    def pump(self) -> int:
        """Delivers buffered page events and fires due timers; returns the event count."""

        by_channel = {tracker.channel_id: tracker for tracker in self.trackers.values()}
        events, missing = self.monitor.flush_events(list(by_channel))
        delivered = 0
        for channel_id in missing:
            tracker = by_channel[channel_id]
            try:
                tracker.recover_channel()
            except ObserverSetupFailure:
                self.trackers.pop(tracker.comment_id, None)
                self.failed[tracker.comment_id] = tracker
        for channel_id, channel_events in events.items():
            tracker = by_channel.get(channel_id)
            if tracker is None or not channel_events:
                continue
            delivered += len(channel_events)
            tracker.handle_events(channel_events)
        self.scheduler.run_due()
        return delivered

    def run_for(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            self.pump()
            time.sleep(self.settings.poll_interval_seconds)
        self.pump()

    def close(self) -> None:
        summary = [
            f"{comment_id}: evaluations={tracker.evaluations} visible={tracker.state.is_visible} live={tracker.state.is_live}"
            for comment_id, tracker in self.trackers.items()
        ]
        for comment_id in list(self.trackers):
            self.untrack(comment_id)
        if summary:
            self.artifact_manager.write_run_log("\n".join(summary) + "\n")
