from __future__ import annotations

from selenium.common.exceptions import StaleElementReferenceException

from reviewpin.core.metadata import AnchorDescriptor, ClickOffset, Point, PositionReading, Rect

CLIENT_RECT_SCRIPT = """
const rect = arguments[0].getBoundingClientRect();
return {x: rect.left, y: rect.top, width: rect.width, height: rect.height};
"""

SCROLL_OFFSET_SCRIPT = """
return {
  x: window.scrollX || window.pageXOffset || 0,
  y: window.scrollY || window.pageYOffset || 0,
};
"""


def read_client_rect(driver, element) -> Rect:
    payload = driver.execute_script(CLIENT_RECT_SCRIPT, element) or {}
    return Rect(
        x=float(payload.get("x", 0.0)),
        y=float(payload.get("y", 0.0)),
        width=float(payload.get("width", 0.0)),
        height=float(payload.get("height", 0.0)),
    )


def read_scroll_offset(driver) -> Point:
    payload = driver.execute_script(SCROLL_OFFSET_SCRIPT) or {}
    return Point(float(payload.get("x", 0.0)), float(payload.get("y", 0.0)))


def compute_position(driver, element, click_offset: ClickOffset | None = None) -> PositionReading | None:
    """Viewport anchor point of a live element.

    Zero-area boxes (for example under a ``display:none`` ancestor) are
    reported as not visible. Returns None if the element went stale
    between resolution and measurement.
    """

    try:
        rect = read_client_rect(driver, element)
    except StaleElementReferenceException:
        return None
    point = rect.anchor(click_offset)
    return PositionReading(point.x, point.y, rect.has_area)


def fallback_point(driver, descriptor: AnchorDescriptor) -> Point | None:
    """Last known anchor point, moved from page space into the viewport."""

    rect = descriptor.fallback_rect
    if rect is None:
        return None
    point = rect.anchor(descriptor.click_offset)
    scroll = read_scroll_offset(driver)
    return Point(point.x - scroll.x, point.y - scroll.y)
