from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from reviewpin.config.loader import ConfigLoader
from reviewpin.core.comments import Comment, CreateCommentRequest
from reviewpin.core.metadata import AnchorDescriptor, ClickOffset, ElementContext, ElementInfo, Rect


def _write_config(tmp_path, **overrides):
    payload = {
        "environment": {
            "base_url": "http://localhost:5000/",
            "api_base_url": "http://localhost:5000",
            "browser_matrix": ["Chrome"],
            "default_timeout_seconds": 5,
            "headless": True,
        },
    }
    payload.update(overrides)
    config_path = tmp_path / "tracking.json"
    config_path.write_text(json.dumps(payload), encoding="utf-8")
    return config_path


def test_config_loader_applies_tracking_defaults(tmp_path):
    config = ConfigLoader.load(_write_config(tmp_path))
    assert config.environment.browser_matrix == ["chrome"]
    assert config.tracking.debounce_ms == 50
    assert config.tracking.navigation_settle_seconds == pytest.approx(0.1)
    assert config.tracking.sweep_interval_seconds == pytest.approx(2.0)
    assert config.tracking.watched_attributes == ["class", "style", "hidden"]
    assert config.tracking.widget_marker_class == "rc-hover-overlay"
    assert config.comments == []


def test_config_loader_rejects_unknown_browser(tmp_path):
    path = _write_config(tmp_path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["environment"]["browser_matrix"] = ["safari"]
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ValidationError):
        ConfigLoader.load(path)


def test_marker_attribute_must_be_data_attribute(tmp_path):
    with pytest.raises(ValidationError):
        ConfigLoader.load(_write_config(tmp_path, tracking={"marker_attribute": "rc-id"}))


def test_intersection_thresholds_are_bounded(tmp_path):
    with pytest.raises(ValidationError):
        ConfigLoader.load(_write_config(tmp_path, tracking={"intersection_thresholds": [0, 1.5]}))


def test_shipped_config_lists_comment_fixtures(suite_config):
    comment = suite_config.get_comment("c-save")
    assert comment.element_x_path == "/html[1]/body[1]/main[1]/div[2]/button[1]"
    with pytest.raises(KeyError):
        suite_config.get_comment("missing")


def test_comment_converts_wire_anchor_fields_to_descriptor():
    comment = Comment.model_validate(
        {
            "id": "c1",
            "text": "Fix alignment",
            "url": "http://demo.local/",
            "elementId": "abc",
            "elementSelector": "#save-btn",
            "elementXPath": "/html[1]/body[1]/button[1]",
            "elementText": "Save",
            "boundingRect": {"x": 1, "y": 2, "width": 3, "height": 4},
            "clickOffset": {"dx": 10, "dy": 5},
            "threadId": "c1",
            "createdAt": "2026-10-01T00:00:00Z",
            "updatedAt": "2026-10-01T00:00:00Z",
        }
    )
    descriptor = comment.to_descriptor()
    assert descriptor == AnchorDescriptor(
        stable_id="abc",
        css_selector="#save-btn",
        xpath="/html[1]/body[1]/button[1]",
        text_snapshot="Save",
        click_offset=ClickOffset(10, 5),
        fallback_rect=Rect(1, 2, 3, 4),
    )


def test_anchor_key_ignores_non_identity_fields(suite_config):
    comment = suite_config.get_comment("c-save")
    edited = comment.model_copy(update={"text": "Reworded", "resolved": True})
    moved = comment.model_copy(update={"element_text": "Submit"})
    assert edited.anchor_key() == comment.anchor_key()
    assert moved.anchor_key() != comment.anchor_key()


def test_create_request_serializes_descriptor_with_camel_case():
    descriptor = AnchorDescriptor(
        stable_id="abc",
        css_selector="h1.hero-title",
        xpath="/html[1]/body[1]/h1[1]",
        click_offset=ClickOffset(4, 6),
        fallback_rect=Rect(10, 10, 400, 40),
    )
    wire = CreateCommentRequest.from_descriptor(descriptor, text="Too generic", url="http://demo.local/").to_wire()
    assert wire["elementXPath"] == "/html[1]/body[1]/h1[1]"
    assert wire["elementId"] == "abc"
    assert wire["clickOffset"] == {"dx": 4, "dy": 6}
    assert wire["boundingRect"] == {"x": 10, "y": 10, "width": 400, "height": 40}
    assert "elementText" not in wire


def test_element_context_travels_as_dom_context():
    context = ElementContext(
        ancestor_path=(ElementInfo("div", None, ("card",), "Churn is flat Save"),),
        siblings=(ElementInfo("p"),),
        computed_styles={"display": "inline-block"},
        attributes={"type": "button"},
    )
    descriptor = AnchorDescriptor(css_selector="#save-btn", text_snapshot="Save", context=context)

    wire = CreateCommentRequest.from_descriptor(descriptor, text="Rename?", url="http://demo.local/").to_wire()
    assert wire["domContext"] == {
        "ancestorPath": [{"tag": "div", "classes": ["card"], "text": "Churn is flat Save"}],
        "siblings": [{"tag": "p"}],
    }
    assert wire["computedStyles"] == {"display": "inline-block"}
    assert wire["attributes"] == {"type": "button"}

    comment = Comment.model_validate(
        {**wire, "id": "c1", "threadId": "c1", "createdAt": "2026-10-01T09:00:00", "updatedAt": "2026-10-01T09:00:00"}
    )
    assert comment.to_descriptor().context == context
    bare = comment.model_copy(update={"dom_context": None, "computed_styles": None, "attributes": None})
    assert bare.anchor_key() == comment.anchor_key()
