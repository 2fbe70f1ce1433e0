from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def has_area(self) -> bool:
        return self.width > 0 and self.height > 0

    def anchor(self, click_offset: ClickOffset | None = None) -> Point:
        """Returns the click point inside the rect, or its center when no offset was recorded."""

        dx = click_offset.dx if click_offset is not None else self.width / 2
        dy = click_offset.dy if click_offset is not None else self.height / 2
        return Point(self.x + dx, self.y + dy)


@dataclass(frozen=True, slots=True)
class ClickOffset:
    dx: float
    dy: float


@dataclass(frozen=True, slots=True)
class ElementInfo:
    tag: str
    element_id: str | None = None
    classes: tuple[str, ...] = ()
    text: str | None = None


@dataclass(frozen=True, slots=True)
class ElementContext:
    """Descriptive surroundings recorded at capture time.

    Stored with the comment for reviewers; resolution never reads it.
    """

    ancestor_path: tuple[ElementInfo, ...] = ()
    siblings: tuple[ElementInfo, ...] = ()
    computed_styles: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AnchorDescriptor:
    """Reproducible description of the element a comment is pinned to.

    Every field is optional. Capture fills what it can observe; the
    resolver tries whichever locators are present.
    """

    stable_id: str | None = None
    css_selector: str | None = None
    xpath: str | None = None
    text_snapshot: str | None = None
    click_offset: ClickOffset | None = None
    fallback_rect: Rect | None = None
    context: ElementContext | None = field(default=None, compare=False)

    @property
    def has_locator(self) -> bool:
        return bool(self.stable_id or self.css_selector or self.xpath)

    def identity_key(self) -> tuple[Any, ...]:
        """Fields whose change requires a fresh tracker."""

        return (self.stable_id, self.css_selector, self.xpath, self.text_snapshot, self.click_offset)


class LocatorTier(str, Enum):
    STABLE_ID = "stable_id"
    CSS_SELECTOR = "css_selector"
    XPATH = "xpath"


class ResolutionOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    TEXT_MISMATCH = "text_mismatch"
    NO_LOCATOR = "no_locator"


@dataclass(slots=True)
class Resolution:
    element: Any = None
    tier: LocatorTier | None = None
    outcome: ResolutionOutcome = ResolutionOutcome.NOT_FOUND
    invalid_locators: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.element is not None


@dataclass(frozen=True, slots=True)
class PositionReading:
    x: float
    y: float
    visible: bool

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


@dataclass(slots=True)
class TrackedState:
    """Per-tracker view handed to the presentation layer.

    The live element is never cached here; callers that need it ask the
    tracker, which re-runs resolution.
    """

    position: Point | None = None
    is_visible: bool = False
    is_live: bool = False
    resolved_tier: LocatorTier | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "position": None if self.position is None else {"x": self.position.x, "y": self.position.y},
            "isVisible": self.is_visible,
        }


@dataclass(frozen=True, slots=True)
class LineageNode:
    tag: str
    element_id: str
    classes: tuple[str, ...]
    type_index: int
    foreign: bool = False


class SignalKind(str, Enum):
    REEVALUATE = "reevaluate"
    NAVIGATE = "navigate"
    VISIBILITY = "visibility"


@dataclass(frozen=True, slots=True)
class Signal:
    kind: SignalKind
    source: str
    entering: bool | None = None


@dataclass(slots=True)
class CaptureRecord:
    stable_id: str
    css_selector: str
    xpath: str
    text_snapshot: str | None
    url: str
    timestamp: str


@dataclass(slots=True)
class ResolutionRecord:
    comment_id: str
    transition: str
    tier: str | None
    outcome: str
    url: str
    timestamp: str
    artifact_paths: dict[str, str] = field(default_factory=dict)
