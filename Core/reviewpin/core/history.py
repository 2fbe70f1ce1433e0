from __future__ import annotations

import logging

log = logging.getLogger(__name__)

INSTALL_HISTORY_SCRIPT = r"""
if (window.__rp_history__) return false;

const originals = {pushState: history.pushState, replaceState: history.replaceState};
const broadcast = (kind) => {
  const registry = window.__rp_watch__;
  if (!registry) return;
  for (const channel of Object.values(registry.channels)) {
    channel.push({type: "navigation", kind: kind, url: window.location.href});
  }
};
const wrappers = {
  pushState: function (...args) {
    const result = originals.pushState.apply(history, args);
    broadcast("pushState");
    return result;
  },
  replaceState: function (...args) {
    const result = originals.replaceState.apply(history, args);
    broadcast("replaceState");
    return result;
  },
};
const onPopState = () => broadcast("popstate");
const onHashChange = () => broadcast("hashchange");

history.pushState = wrappers.pushState;
history.replaceState = wrappers.replaceState;
window.addEventListener("popstate", onPopState);
window.addEventListener("hashchange", onHashChange);
window.__rp_history__ = {originals, wrappers, onPopState, onHashChange};
return true;
"""

RESTORE_HISTORY_SCRIPT = """
const state = window.__rp_history__;
if (!state) return false;
if (history.pushState === state.wrappers.pushState) {
  history.pushState = state.originals.pushState;
}
if (history.replaceState === state.wrappers.replaceState) {
  history.replaceState = state.originals.replaceState;
}
window.removeEventListener("popstate", state.onPopState);
window.removeEventListener("hashchange", state.onHashChange);
delete window.__rp_history__;
return true;
"""


class HistoryLease:
    """One holder's claim on the shared history interception."""

    def __init__(self, interceptor: HistoryInterceptor) -> None:
        self._interceptor = interceptor
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._interceptor._release()


class HistoryInterceptor:
    """Reference-counted wrapping of ``history.pushState``/``replaceState``.

    The page is patched once when the first lease is taken and restored
    when the last lease is released, so wrappers never nest no matter how
    many trackers come and go.
    """

    def __init__(self, driver) -> None:
        self.driver = driver
        self.ref_count = 0

    @property
    def installed(self) -> bool:
        return self.ref_count > 0

    def acquire(self) -> HistoryLease:
        if self.ref_count == 0:
            self.driver.execute_script(INSTALL_HISTORY_SCRIPT)
            log.debug("History interception installed")
        self.ref_count += 1
        return HistoryLease(self)

    def reinstall(self) -> bool:
        """Re-patches a freshly loaded document while leases are outstanding."""

        if self.ref_count == 0:
            return False
        return bool(self.driver.execute_script(INSTALL_HISTORY_SCRIPT))

    def _release(self) -> None:
        if self.ref_count == 0:
            return
        self.ref_count -= 1
        if self.ref_count == 0:
            self.driver.execute_script(RESTORE_HISTORY_SCRIPT)
            log.debug("History interception restored")
