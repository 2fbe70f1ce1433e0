from __future__ import annotations

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.metadata import Point
from reviewpin.utils.timers import wait_until

ACTIVATE_PICKER_SCRIPT = r"""
const rootId = arguments[0];
const markerClass = arguments[1];
const existing = window.__rp_picker__;
if (existing && existing.active) return true;

const state = {active: true, selection: null, handler: null};
const isWidgetElement = (node) => {
  if (node.id === rootId || node.closest("#" + CSS.escape(rootId))) return true;
  return Boolean(markerClass) && node.classList.contains(markerClass);
};
state.handler = (event) => {
  const target = event.target;
  if (!(target instanceof Element) || isWidgetElement(target)) return;
  event.preventDefault();
  event.stopPropagation();
  event.stopImmediatePropagation();
  state.selection = {element: target, x: event.clientX, y: event.clientY};
  document.removeEventListener("click", state.handler, true);
  state.active = false;
  document.body.style.cursor = "";
};
document.addEventListener("click", state.handler, true);
document.body.style.cursor = "crosshair";
window.__rp_picker__ = state;
return true;
"""

TAKE_SELECTION_SCRIPT = """
const state = window.__rp_picker__;
if (!state || !state.selection) return null;
const selection = state.selection;
state.selection = null;
return selection;
"""

DEACTIVATE_PICKER_SCRIPT = """
const state = window.__rp_picker__;
if (!state) return false;
if (state.active) {
  document.removeEventListener("click", state.handler, true);
  document.body.style.cursor = "";
}
state.active = false;
return true;
"""


class ElementPicker:
    """One-shot click picker: the next click outside the widget selects an element."""

    def __init__(self, driver, settings: TrackingSettings) -> None:
        self.driver = driver
        self.settings = settings

    def activate(self) -> None:
        self.driver.execute_script(
            ACTIVATE_PICKER_SCRIPT,
            self.settings.widget_root_id,
            self.settings.widget_marker_class,
        )

    def deactivate(self) -> None:
        self.driver.execute_script(DEACTIVATE_PICKER_SCRIPT)

    def take_selection(self) -> tuple[object, Point] | None:
        selection = self.driver.execute_script(TAKE_SELECTION_SCRIPT)
        if not selection:
            return None
        return selection["element"], Point(float(selection["x"]), float(selection["y"]))

    def wait_for_selection(self, timeout: float, interval: float = 0.2) -> tuple[object, Point] | None:
        selection = wait_until(self.take_selection, timeout, interval)
        if selection is None:
            self.deactivate()
        return selection
