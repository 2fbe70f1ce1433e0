from __future__ import annotations

from typing import Callable, Sequence

from reviewpin.core.metadata import LineageNode

MatchCounter = Callable[[str], int]

_ROOT_TAGS = {"html", "body"}


def css_escape(identifier: str) -> str:
    """Escapes an identifier the way the browser's ``CSS.escape`` does."""

    escaped: list[str] = []
    for index, char in enumerate(identifier):
        code = ord(char)
        if code == 0:
            escaped.append("\ufffd")
        elif 0x01 <= code <= 0x1F or code == 0x7F:
            escaped.append(f"\\{code:x} ")
        elif index == 0 and char.isdigit() and char.isascii():
            escaped.append(f"\\{code:x} ")
        elif index == 1 and char.isdigit() and char.isascii() and identifier[0] == "-":
            escaped.append(f"\\{code:x} ")
        elif index == 0 and char == "-" and len(identifier) == 1:
            escaped.append("\\-")
        elif code >= 0x80 or char in "-_" or (char.isascii() and char.isalnum()):
            escaped.append(char)
        else:
            escaped.append(f"\\{char}")
    return "".join(escaped)


def css_string(value: str) -> str:
    """Quotes a value for use inside a CSS attribute selector."""

    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def marker_selector(marker_attribute: str, stable_id: str) -> str:
    return f"[{marker_attribute}={css_string(stable_id)}]"


def build_css_selector(
    lineage: Sequence[LineageNode],
    count_matches: MatchCounter,
    class_prefix: str = "rc-",
) -> str:
    """Builds the most specific unique selector for ``lineage[0]``.

    Tries ``#id``, then ``tag.class``, both only when they match exactly one
    element, and otherwise falls back to a positional nth-of-type path.
    """

    if not lineage:
        raise ValueError("lineage must contain the target element")
    target = lineage[0]
    if target.element_id:
        selector = f"#{css_escape(target.element_id)}"
        if count_matches(selector) == 1:
            return selector

    classes = [name for name in target.classes if name and not name.startswith(class_prefix)]
    if classes:
        selector = target.tag + "".join(f".{css_escape(name)}" for name in classes)
        if count_matches(selector) == 1:
            return selector

    return nth_of_type_path(lineage)


def nth_of_type_path(lineage: Sequence[LineageNode]) -> str:
    segments: list[str] = []
    for node in lineage:
        if node.tag in _ROOT_TAGS:
            break
        segments.append(f"{node.tag}:nth-of-type({node.type_index})")
    if not segments:
        return lineage[0].tag
    return " ".join(reversed(segments))


def build_xpath(lineage: Sequence[LineageNode]) -> str:
    """Absolute XPath from the document root with explicit same-tag indices."""

    if not lineage:
        raise ValueError("lineage must contain the target element")
    steps = []
    for node in reversed(lineage):
        name = f"*[local-name()='{node.tag}']" if node.foreign else node.tag
        steps.append(f"{name}[{node.type_index}]")
    return "/" + "/".join(steps)


def is_widget_lineage(lineage: Sequence[LineageNode], widget_root_id: str, marker_class: str) -> bool:
    """True when the element is, or sits inside, the widget's own subtree.

    Page elements outside the widget root only count when they carry the
    widget's marker class (the hover overlay).
    """

    if not lineage:
        return False
    if marker_class and marker_class in lineage[0].classes:
        return True
    return any(node.element_id == widget_root_id for node in lineage)
