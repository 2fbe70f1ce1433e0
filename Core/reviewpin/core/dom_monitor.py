from __future__ import annotations

from selenium.common.exceptions import JavascriptException

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.exceptions import ObserverSetupFailure

INSTALL_CHANNEL_SCRIPT = r"""
const channelId = arguments[0];
const watchedAttributes = arguments[1];
const thresholds = arguments[2];
const limit = arguments[3];

const registry = window.__rp_watch__ = window.__rp_watch__ || {channels: {}};
if (registry.channels[channelId]) {
  return {ok: true, reused: true};
}
if (typeof MutationObserver !== "function" || typeof IntersectionObserver !== "function") {
  return {ok: false, error: "MutationObserver or IntersectionObserver is not available"};
}
if (!document.body) {
  return {ok: false, error: "document.body is not available"};
}

const channel = {events: [], target: null, mutation: null, intersection: null, listeners: []};
channel.push = (event) => {
  event.timestamp = Date.now();
  channel.events.push(event);
  if (channel.events.length > limit) {
    channel.events = channel.events.slice(-limit);
  }
};

try {
  channel.mutation = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      if (mutation.type === "childList") {
        channel.push({
          type: "childList",
          addedCount: mutation.addedNodes ? mutation.addedNodes.length : 0,
          removedCount: mutation.removedNodes ? mutation.removedNodes.length : 0,
        });
      } else if (mutation.type === "attributes") {
        const target = channel.target;
        channel.push({
          type: "attributes",
          attributeName: mutation.attributeName || "",
          touchesTarget: Boolean(target && mutation.target instanceof Node && mutation.target.contains(target)),
        });
      }
    }
  });
  channel.mutation.observe(document.body, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: watchedAttributes,
  });
  channel.intersection = new IntersectionObserver((entries) => {
    const entry = entries[entries.length - 1];
    if (!entry) return;
    channel.push({
      type: "intersection",
      isIntersecting: entry.isIntersecting,
      ratio: entry.intersectionRatio,
    });
  }, {threshold: thresholds});
} catch (error) {
  if (channel.mutation) channel.mutation.disconnect();
  return {ok: false, error: String(error)};
}

const onScroll = () => channel.push({type: "scroll"});
const onResize = () => channel.push({type: "resize"});
window.addEventListener("scroll", onScroll, {passive: true, capture: true});
window.addEventListener("resize", onResize);
channel.listeners = [["scroll", onScroll, true], ["resize", onResize, false]];
registry.channels[channelId] = channel;
return {ok: true, reused: false};
"""

FOCUS_SCRIPT = """
const registry = window.__rp_watch__;
const channel = registry ? registry.channels[arguments[0]] : null;
if (!channel) return false;
const element = arguments[1] || null;
if (channel.target === element) return true;
if (channel.target) channel.intersection.unobserve(channel.target);
channel.target = element;
if (element) channel.intersection.observe(element);
return true;
"""

FLUSH_EVENTS_SCRIPT = """
const registry = window.__rp_watch__;
const events = {};
const missing = [];
for (const channelId of arguments[0]) {
  const channel = registry ? registry.channels[channelId] : null;
  if (!channel) {
    missing.push(channelId);
    continue;
  }
  events[channelId] = channel.events;
  channel.events = [];
}
return {events: events, missing: missing};
"""

TEARDOWN_CHANNEL_SCRIPT = """
const registry = window.__rp_watch__;
const channel = registry ? registry.channels[arguments[0]] : null;
if (!channel) return false;
channel.mutation.disconnect();
channel.intersection.disconnect();
for (const [type, handler, capture] of channel.listeners) {
  window.removeEventListener(type, handler, capture);
}
channel.target = null;
delete registry.channels[arguments[0]];
return true;
"""


class DomMonitor:
    """Installs and reads per-tracker watch channels inside the page."""

    def __init__(self, driver, settings: TrackingSettings) -> None:
        self.driver = driver
        self.settings = settings

    def install(self, channel_id: str) -> bool:
        """Creates the channel's observers; returns False if it already existed."""

        try:
            result = self.driver.execute_script(
                INSTALL_CHANNEL_SCRIPT,
                channel_id,
                list(self.settings.watched_attributes),
                list(self.settings.intersection_thresholds),
                self.settings.event_buffer_limit,
            )
        except JavascriptException as exc:
            raise ObserverSetupFailure(f"Observer installation script failed: {exc.msg}") from exc
        if not result or not result.get("ok"):
            detail = (result or {}).get("error", "unknown error")
            raise ObserverSetupFailure(f"Could not create observers for {channel_id}: {detail}")
        return not result.get("reused", False)

    def focus(self, channel_id: str, element) -> bool:
        return bool(self.driver.execute_script(FOCUS_SCRIPT, channel_id, element))

    def flush_events(self, channel_ids: list[str]) -> tuple[dict[str, list[dict]], list[str]]:
        if not channel_ids:
            return {}, []
        payload = self.driver.execute_script(FLUSH_EVENTS_SCRIPT, list(channel_ids)) or {}
        return payload.get("events", {}) or {}, payload.get("missing", []) or []

    def teardown(self, channel_id: str) -> bool:
        return bool(self.driver.execute_script(TEARDOWN_CHANNEL_SCRIPT, channel_id))
