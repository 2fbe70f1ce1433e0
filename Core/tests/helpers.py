from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
from urllib import error, request

import lxml.html
import pytest
from cssselect import HTMLTranslator, SelectorError
from lxml import etree
from selenium.common.exceptions import (
    InvalidSelectorException,
    JavascriptException,
    StaleElementReferenceException,
    WebDriverException,
)
from selenium.webdriver.common.by import By

from reviewpin.core.browser import BrowserSession
from reviewpin.core.capture import ELEMENT_LINEAGE_SCRIPT, STAMP_MARKER_SCRIPT
from reviewpin.core.dom_monitor import (
    FLUSH_EVENTS_SCRIPT,
    FOCUS_SCRIPT,
    INSTALL_CHANNEL_SCRIPT,
    TEARDOWN_CHANNEL_SCRIPT,
)
from reviewpin.core.history import INSTALL_HISTORY_SCRIPT, RESTORE_HISTORY_SCRIPT
from reviewpin.core.picker import ACTIVATE_PICKER_SCRIPT, DEACTIVATE_PICKER_SCRIPT, TAKE_SELECTION_SCRIPT
from reviewpin.core.position import CLIENT_RECT_SCRIPT, SCROLL_OFFSET_SCRIPT
from reviewpin.core.session import TrackingSession
from reviewpin.logging.artifacts import ArtifactManager
from reviewpin.logging.audit import TrackingAuditLogger
from reviewpin.utils.timers import ManualClock, Scheduler

DEFAULT_RECT = (0.0, 0.0, 100.0, 20.0)

DEMO_HTML = """
<html>
  <head><title>demo</title></head>
  <body>
    <h1 class="hero-title" data-test-rect="10,10,400,40">Quarterly report</h1>
    <div class="card" data-test-rect="10,80,320,60"><p data-test-rect="20,90,200,20">Revenue grew</p></div>
    <div class="card" data-test-rect="10,160,320,60">
      <p data-test-rect="20,170,200,20">Churn is flat</p>
      <button id="save-btn" type="button" data-test-rect="200,300,100,40">Save</button>
    </div>
    <div id="reviewcycle-root"><button class="rc-floating-button" type="button">Comment</button></div>
  </body>
</html>
"""


class FakeElement:
    """WebElement stand-in wrapping an lxml node."""

    def __init__(self, driver: FakeDriver, node) -> None:
        self.driver = driver
        self.node = node

    def __eq__(self, other) -> bool:
        return isinstance(other, FakeElement) and other.node is self.node

    def __hash__(self) -> int:
        return id(self.node)

    def __repr__(self) -> str:
        return f"FakeElement(<{self.node.tag}>)"

    @property
    def tag_name(self) -> str:
        return self.node.tag

    @property
    def attached(self) -> bool:
        return self.driver.is_attached(self.node)

    def get_property(self, name: str):
        if not self.attached:
            raise StaleElementReferenceException("element is not attached to the page document")
        if name == "textContent":
            return self.node.text_content()
        return self.node.get(name)

    def get_attribute(self, name: str):
        return self.node.get(name)


class FakeChannel:
    def __init__(self, watched: list[str]) -> None:
        self.watched = watched
        self.events: list[dict] = []
        self.target = None

    def push(self, event: dict) -> None:
        self.events.append(event)


class FakeDriver:
    """In-memory WebDriver double: real CSS/XPath engines, scripted page behaviour."""

    def __init__(self, html: str = DEMO_HTML, url: str = "http://demo.local/") -> None:
        self.html = html
        self.current_url = url
        self.fail_observers = False
        self.fail_history = False
        self.script_calls: list[str] = []
        self.screenshots: list[str] = []
        self._translator = HTMLTranslator()
        self._load()
        self._handlers = {
            CLIENT_RECT_SCRIPT: self._client_rect,
            SCROLL_OFFSET_SCRIPT: self._scroll_offset,
            ELEMENT_LINEAGE_SCRIPT: self._lineage,
            STAMP_MARKER_SCRIPT: self._stamp,
            INSTALL_CHANNEL_SCRIPT: self._install_channel,
            FOCUS_SCRIPT: self._focus,
            FLUSH_EVENTS_SCRIPT: self._flush,
            TEARDOWN_CHANNEL_SCRIPT: self._teardown_channel,
            INSTALL_HISTORY_SCRIPT: self._install_history,
            RESTORE_HISTORY_SCRIPT: self._restore_history,
            ACTIVATE_PICKER_SCRIPT: self._activate_picker,
            TAKE_SELECTION_SCRIPT: self._take_selection,
            DEACTIVATE_PICKER_SCRIPT: self._deactivate_picker,
        }

    def _load(self) -> None:
        self.root = lxml.html.document_fromstring(self.html)
        self.scroll = (0.0, 0.0)
        self.channels: dict[str, FakeChannel] = {}
        self.history_patched = False
        self.history_installs = 0
        self.history_restores = 0
        self.picker_active = False
        self.selection = None

    # WebDriver surface

    def find_elements(self, by: str, value: str) -> list[FakeElement]:
        if by == By.CSS_SELECTOR:
            try:
                expression = self._translator.css_to_xpath(value)
            except SelectorError as exc:
                raise InvalidSelectorException(f"invalid selector: {exc}") from exc
        elif by == By.XPATH:
            expression = value
        else:
            raise InvalidSelectorException(f"unsupported locator strategy: {by}")
        try:
            nodes = self.root.xpath(expression)
        except etree.XPathError as exc:
            raise InvalidSelectorException(f"invalid xpath: {exc}") from exc
        if not isinstance(nodes, list):
            raise InvalidSelectorException("xpath did not evaluate to a node-set")
        return [FakeElement(self, node) for node in nodes if isinstance(node, etree._Element) and isinstance(node.tag, str)]

    def execute_script(self, script: str, *args):
        handler = self._handlers.get(script)
        if handler is None:
            raise WebDriverException("script not supported by FakeDriver")
        self.script_calls.append(handler.__name__)
        return handler(*[arg.node if isinstance(arg, FakeElement) else arg for arg in args])

    @property
    def page_source(self) -> str:
        return lxml.html.tostring(self.root, encoding="unicode")

    def save_screenshot(self, path: str) -> bool:
        Path(path).write_bytes(b"")
        self.screenshots.append(path)
        return True

    # Page manipulation used by tests

    def node(self, css: str):
        matches = self.root.cssselect(css, translator="html")
        assert matches, f"no node for {css}"
        return matches[0]

    def element(self, css: str) -> FakeElement:
        return FakeElement(self, self.node(css))

    def mutate(self, change) -> None:
        change(self.root)
        for channel in self.channels.values():
            channel.push({"type": "childList", "addedCount": 1, "removedCount": 1})

    def set_attribute(self, node, name: str, value: str | None) -> None:
        if value is None:
            node.attrib.pop(name, None)
        else:
            node.set(name, value)
        for channel in self.channels.values():
            if name not in channel.watched:
                continue
            touches = channel.target is not None and (
                channel.target is node or any(ancestor is node for ancestor in channel.target.iterancestors())
            )
            channel.push({"type": "attributes", "attributeName": name, "touchesTarget": touches})

    def scroll_to(self, x: float, y: float) -> None:
        self.scroll = (float(x), float(y))
        for channel in self.channels.values():
            channel.push({"type": "scroll"})

    def resize(self) -> None:
        for channel in self.channels.values():
            channel.push({"type": "resize"})

    def intersect(self, is_intersecting: bool, ratio: float = 1.0) -> None:
        for channel in self.channels.values():
            if channel.target is not None:
                channel.push({"type": "intersection", "isIntersecting": is_intersecting, "ratio": ratio})

    def push_state(self, url: str, kind: str = "pushState") -> None:
        self.current_url = url
        if self.history_patched:
            for channel in self.channels.values():
                channel.push({"type": "navigation", "kind": kind, "url": url})

    def reload(self) -> None:
        self._load()

    def click(self, node, x: float, y: float) -> bool:
        if not self.picker_active or self._is_widget(node):
            return False
        self.selection = {"element": FakeElement(self, node), "x": x, "y": y}
        self.picker_active = False
        return True

    def is_attached(self, node) -> bool:
        # lxml keeps the document reachable from detached nodes, so walk up instead.
        return node is self.root or any(ancestor is self.root for ancestor in node.iterancestors())

    def channel_targets(self) -> dict[str, object]:
        return {channel_id: channel.target for channel_id, channel in self.channels.items()}

    # Script handlers

    def _page_rect(self, node) -> tuple[float, float, float, float]:
        for current in [node, *node.iterancestors()]:
            style = (current.get("style") or "").replace(" ", "").lower()
            if "display:none" in style or current.get("hidden") is not None:
                return (0.0, 0.0, 0.0, 0.0)
        raw = node.get("data-test-rect")
        if not raw:
            return DEFAULT_RECT
        x, y, width, height = (float(part) for part in raw.split(","))
        return (x, y, width, height)

    def _client_rect(self, node) -> dict:
        if not self.is_attached(node):
            raise StaleElementReferenceException("element is not attached to the page document")
        x, y, width, height = self._page_rect(node)
        if width == 0 and height == 0:
            return {"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0}
        return {"x": x - self.scroll[0], "y": y - self.scroll[1], "width": width, "height": height}

    def _scroll_offset(self) -> dict:
        return {"x": self.scroll[0], "y": self.scroll[1]}

    def _lineage(self, node, marker_attribute: str) -> dict:
        nodes = []
        for current in [node, *node.iterancestors()]:
            index = 1 + sum(1 for sibling in current.itersiblings(preceding=True) if sibling.tag == current.tag)
            nodes.append(
                {
                    "tag": current.tag.lower(),
                    "id": current.get("id", ""),
                    "classes": (current.get("class") or "").split(),
                    "typeIndex": index,
                    "foreign": False,
                }
            )
        return {
            "nodes": nodes,
            "context": self._context(node, marker_attribute),
            "rect": self._client_rect(node),
            "scroll": self._scroll_offset(),
            "text": node.text_content(),
            "marker": node.get(marker_attribute, ""),
            "url": self.current_url,
        }

    @staticmethod
    def _describe(node, with_text: bool) -> dict:
        info = {"tag": node.tag.lower()}
        if node.get("id"):
            info["id"] = node.get("id")
        if (node.get("class") or "").split():
            info["classes"] = node.get("class").split()
        text = node.text_content().strip()[:50]
        if with_text and text:
            info["text"] = text
        return info

    def _context(self, node, marker_attribute: str) -> dict:
        ancestors = []
        for ancestor in node.iterancestors():
            if ancestor.tag in ("body", "html") or len(ancestors) == 5:
                break
            ancestors.append(self._describe(ancestor, True))
        parent = node.getparent()
        siblings = [
            self._describe(child, False) for child in parent if child is not node and isinstance(child.tag, str)
        ] if parent is not None else []
        # Inline declarations stand in for computed styles.
        styles = {}
        for declaration in (node.get("style") or "").split(";"):
            name, _, value = declaration.partition(":")
            if name.strip() and value.strip():
                styles[name.strip().lower()] = value.strip()
        attributes = {
            name: value
            for name, value in node.attrib.items()
            if value
            and name not in (marker_attribute, "data-test-rect")
            and (name in ("href", "src", "alt", "title", "placeholder", "type", "name") or name.startswith(("data-", "aria-")))
        }
        return {"ancestorPath": ancestors, "siblings": siblings, "computedStyles": styles, "attributes": attributes}

    def _stamp(self, node, name: str, value: str) -> None:
        node.set(name, value)

    def _install_channel(self, channel_id: str, watched: list[str], thresholds: list[float], limit: int) -> dict:
        if self.fail_observers:
            return {"ok": False, "error": "MutationObserver or IntersectionObserver is not available"}
        if channel_id in self.channels:
            return {"ok": True, "reused": True}
        self.channels[channel_id] = FakeChannel(list(watched))
        return {"ok": True, "reused": False}

    def _focus(self, channel_id: str, node) -> bool:
        channel = self.channels.get(channel_id)
        if channel is None:
            return False
        channel.target = node
        return True

    def _flush(self, channel_ids: list[str]) -> dict:
        events = {}
        missing = []
        for channel_id in channel_ids:
            channel = self.channels.get(channel_id)
            if channel is None:
                missing.append(channel_id)
                continue
            events[channel_id], channel.events = channel.events, []
        return {"events": events, "missing": missing}

    def _teardown_channel(self, channel_id: str) -> bool:
        return self.channels.pop(channel_id, None) is not None

    def _install_history(self) -> bool:
        if self.fail_history:
            raise JavascriptException("javascript error: history is not writable")
        if self.history_patched:
            return False
        self.history_patched = True
        self.history_installs += 1
        return True

    def _restore_history(self) -> bool:
        if not self.history_patched:
            return False
        self.history_patched = False
        self.history_restores += 1
        return True

    def _activate_picker(self, root_id: str, marker_class: str) -> bool:
        self.picker_active = True
        self._widget = (root_id, marker_class)
        return True

    def _take_selection(self):
        selection, self.selection = self.selection, None
        return selection

    def _deactivate_picker(self) -> bool:
        self.picker_active = False
        return True

    def _is_widget(self, node) -> bool:
        root_id, marker_class = getattr(self, "_widget", ("reviewcycle-root", "rc-hover-overlay"))
        if marker_class in (node.get("class") or "").split():
            return True
        return any(current.get("id") == root_id for current in [node, *node.iterancestors()])


@dataclass(slots=True)
class TrackingRuntime:
    driver: FakeDriver
    clock: ManualClock
    scheduler: Scheduler
    session: TrackingSession
    audit_logger: TrackingAuditLogger
    artifact_manager: ArtifactManager
    changes: list[tuple[str, dict]]

    def advance(self, seconds: float) -> None:
        """Delivers events raised so far, then lets ``seconds`` pass."""

        self.session.pump()
        self.clock.advance(seconds)
        self.session.pump()


def build_runtime(suite_config, tmp_path: Path, html: str = DEMO_HTML) -> TrackingRuntime:
    driver = FakeDriver(html)
    clock = ManualClock()
    scheduler = Scheduler(clock)
    audit_logger = TrackingAuditLogger(tmp_path / "artifacts")
    artifact_manager = ArtifactManager(tmp_path / "artifacts")
    changes: list[tuple[str, dict]] = []
    session = TrackingSession(
        driver,
        suite_config,
        scheduler=scheduler,
        audit_logger=audit_logger,
        artifact_manager=artifact_manager,
        on_change=lambda comment_id, state: changes.append((comment_id, state.snapshot())),
    )
    return TrackingRuntime(driver, clock, scheduler, session, audit_logger, artifact_manager, changes)


def require_reachable_base_url(suite_config) -> None:
    try:
        with request.urlopen(suite_config.environment.base_url, timeout=2):
            return
    except (error.URLError, TimeoutError) as exc:
        pytest.skip(f"Demo app is not reachable at {suite_config.environment.base_url}: {exc}")


@contextmanager
def managed_browser(suite_config, browser_name: str) -> Iterator[object]:
    browser_session = BrowserSession(suite_config.environment)
    try:
        driver = browser_session.start(browser_name)
    except WebDriverException as exc:
        pytest.skip(f"WebDriver could not start for {browser_name}: {exc}")
    try:
        yield driver
    finally:
        driver.quit()
