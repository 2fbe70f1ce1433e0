from __future__ import annotations

import logging
import uuid

from selenium.common.exceptions import InvalidSelectorException
from selenium.webdriver.common.by import By

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.exceptions import CaptureRejected
from reviewpin.core.locators import build_css_selector, build_xpath, is_widget_lineage
from reviewpin.core.metadata import (
    AnchorDescriptor,
    ClickOffset,
    ElementContext,
    ElementInfo,
    LineageNode,
    Point,
    Rect,
)

log = logging.getLogger(__name__)

ELEMENT_LINEAGE_SCRIPT = r"""
const target = arguments[0];
const markerAttribute = arguments[1];
const XHTML = "http://www.w3.org/1999/xhtml";
const nodes = [];
let current = target;
while (current && current.nodeType === Node.ELEMENT_NODE) {
  let index = 1;
  let sibling = current.previousElementSibling;
  while (sibling) {
    if (sibling.localName === current.localName) index++;
    sibling = sibling.previousElementSibling;
  }
  const foreign = current.namespaceURI !== XHTML;
  nodes.push({
    tag: foreign ? current.localName : current.localName.toLowerCase(),
    id: current.id || "",
    classes: Array.from(current.classList || []),
    typeIndex: index,
    foreign: foreign,
  });
  current = current.parentElement;
}
const describe = (node, withText) => {
  const info = {tag: node.localName.toLowerCase()};
  if (node.id) info.id = node.id;
  if (node.classList && node.classList.length) info.classes = Array.from(node.classList);
  if (withText) {
    const text = (node.textContent || "").trim().substring(0, 50);
    if (text) info.text = text;
  }
  return info;
};
const ancestorPath = [];
let ancestor = target.parentElement;
while (ancestor && ancestorPath.length < 5 && ancestor !== document.body) {
  ancestorPath.push(describe(ancestor, true));
  ancestor = ancestor.parentElement;
}
const siblings = [];
if (target.parentElement) {
  for (const sibling of target.parentElement.children) {
    if (sibling !== target) siblings.push(describe(sibling, false));
  }
}
const computed = window.getComputedStyle(target);
const computedStyles = {};
for (const name of [
  "display", "position", "width", "height", "padding", "margin", "border",
  "background-color", "color", "font-size", "font-weight", "text-align",
]) {
  const value = computed.getPropertyValue(name);
  if (value) computedStyles[name] = value;
}
const attributes = {};
for (const name of ["href", "src", "alt", "title", "placeholder", "type", "name"]) {
  const value = target.getAttribute(name);
  if (value) attributes[name] = value;
}
for (const attribute of Array.from(target.attributes)) {
  if (attribute.name === markerAttribute) continue;
  if (attribute.name.startsWith("data-") || attribute.name.startsWith("aria-")) {
    attributes[attribute.name] = attribute.value;
  }
}
const rect = target.getBoundingClientRect();
return {
  nodes: nodes,
  context: {
    ancestorPath: ancestorPath,
    siblings: siblings,
    computedStyles: computedStyles,
    attributes: attributes,
  },
  rect: {x: rect.left, y: rect.top, width: rect.width, height: rect.height},
  scroll: {x: window.scrollX || 0, y: window.scrollY || 0},
  text: target.textContent || "",
  marker: target.getAttribute(markerAttribute) || "",
  url: window.location.href,
};
"""

STAMP_MARKER_SCRIPT = """
arguments[0].setAttribute(arguments[1], arguments[2]);
"""


class AnchorCapture:
    """Derives an anchor descriptor from an element the reviewer clicked."""

    def __init__(self, driver, settings: TrackingSettings, audit_logger=None) -> None:
        self.driver = driver
        self.settings = settings
        self.audit_logger = audit_logger

    def capture(self, element, click: Point | None = None) -> AnchorDescriptor:
        """Captures ``element``; ``click`` is the pointer position in viewport coordinates.

        An element that already carries the marker attribute keeps its value
        as the stable id, so earlier comments on it still resolve.
        """

        payload = self.driver.execute_script(ELEMENT_LINEAGE_SCRIPT, element, self.settings.marker_attribute) or {}
        lineage = [
            LineageNode(
                tag=item.get("tag", ""),
                element_id=item.get("id", ""),
                classes=tuple(item.get("classes", [])),
                type_index=int(item.get("typeIndex", 1)),
                foreign=bool(item.get("foreign", False)),
            )
            for item in payload.get("nodes", [])
        ]
        if not lineage:
            raise CaptureRejected("Element is not attached to a document")
        if is_widget_lineage(lineage, self.settings.widget_root_id, self.settings.widget_marker_class):
            raise CaptureRejected("Refusing to anchor a comment to the widget's own elements")

        stable_id = payload.get("marker") or uuid.uuid4().hex
        self.driver.execute_script(STAMP_MARKER_SCRIPT, element, self.settings.marker_attribute, stable_id)

        rect_payload = payload.get("rect", {})
        scroll = payload.get("scroll", {})
        client_rect = Rect(
            x=float(rect_payload.get("x", 0.0)),
            y=float(rect_payload.get("y", 0.0)),
            width=float(rect_payload.get("width", 0.0)),
            height=float(rect_payload.get("height", 0.0)),
        )
        page_rect = Rect(
            x=client_rect.x + float(scroll.get("x", 0.0)),
            y=client_rect.y + float(scroll.get("y", 0.0)),
            width=client_rect.width,
            height=client_rect.height,
        )
        click_offset = None
        if click is not None:
            click_offset = ClickOffset(click.x - client_rect.x, click.y - client_rect.y)
        text = (payload.get("text") or "").strip()

        descriptor = AnchorDescriptor(
            stable_id=stable_id,
            css_selector=build_css_selector(lineage, self._count_matches, self.settings.widget_class_prefix),
            xpath=build_xpath(lineage),
            text_snapshot=text or None,
            click_offset=click_offset,
            fallback_rect=page_rect,
            context=_element_context(payload.get("context") or {}),
        )
        log.info("Captured anchor %s (%s)", stable_id, descriptor.css_selector)
        if self.audit_logger is not None:
            self.audit_logger.write_capture(descriptor, url=payload.get("url", ""))
        return descriptor

    def _count_matches(self, selector: str) -> int:
        try:
            return len(self.driver.find_elements(By.CSS_SELECTOR, selector))
        except InvalidSelectorException:
            return 0


def _element_info(item: dict) -> ElementInfo:
    return ElementInfo(
        tag=item.get("tag", ""),
        element_id=item.get("id") or None,
        classes=tuple(item.get("classes") or ()),
        text=item.get("text") or None,
    )


def _element_context(payload: dict) -> ElementContext:
    return ElementContext(
        ancestor_path=tuple(_element_info(item) for item in payload.get("ancestorPath", [])),
        siblings=tuple(_element_info(item) for item in payload.get("siblings", [])),
        computed_styles=dict(payload.get("computedStyles") or {}),
        attributes=dict(payload.get("attributes") or {}),
    )
