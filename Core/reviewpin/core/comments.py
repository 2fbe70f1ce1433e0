from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from reviewpin.core.metadata import AnchorDescriptor, ClickOffset, ElementContext, ElementInfo, Rect


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class BoundingRect(WireModel):
    x: float
    y: float
    width: float
    height: float


class ClickOffsetModel(WireModel):
    dx: float
    dy: float


class ElementInfoModel(WireModel):
    tag: str
    id: str | None = None
    classes: list[str] | None = None
    text: str | None = None

    @classmethod
    def from_info(cls, info: ElementInfo) -> ElementInfoModel:
        return cls(tag=info.tag, id=info.element_id, classes=list(info.classes) or None, text=info.text)

    def to_info(self) -> ElementInfo:
        return ElementInfo(self.tag, self.id or None, tuple(self.classes or ()), self.text or None)


class DomContext(WireModel):
    ancestor_path: list[ElementInfoModel] = Field(default_factory=list)
    siblings: list[ElementInfoModel] = Field(default_factory=list)


class AnchorFields(WireModel):
    element_selector: str | None = None
    element_x_path: str | None = Field(default=None, alias="elementXPath")
    element_id: str | None = None
    element_text: str | None = None
    bounding_rect: BoundingRect | None = None
    click_offset: ClickOffsetModel | None = None
    dom_context: DomContext | None = None
    computed_styles: dict[str, str] | None = None
    attributes: dict[str, str] | None = None

    def to_descriptor(self) -> AnchorDescriptor:
        rect = self.bounding_rect
        offset = self.click_offset
        return AnchorDescriptor(
            stable_id=self.element_id or None,
            css_selector=self.element_selector or None,
            xpath=self.element_x_path or None,
            text_snapshot=self.element_text or None,
            click_offset=None if offset is None else ClickOffset(offset.dx, offset.dy),
            fallback_rect=None if rect is None else Rect(rect.x, rect.y, rect.width, rect.height),
            context=self.element_context(),
        )

    def element_context(self) -> ElementContext | None:
        if self.dom_context is None and self.computed_styles is None and self.attributes is None:
            return None
        dom = self.dom_context or DomContext()
        return ElementContext(
            ancestor_path=tuple(item.to_info() for item in dom.ancestor_path),
            siblings=tuple(item.to_info() for item in dom.siblings),
            computed_styles=dict(self.computed_styles or {}),
            attributes=dict(self.attributes or {}),
        )


class CreateCommentRequest(AnchorFields):
    text: str
    url: str
    author_name: str | None = None
    parent_id: str | None = None

    @classmethod
    def from_descriptor(
        cls,
        descriptor: AnchorDescriptor,
        *,
        text: str,
        url: str,
        author_name: str | None = None,
        parent_id: str | None = None,
    ) -> CreateCommentRequest:
        rect = descriptor.fallback_rect
        offset = descriptor.click_offset
        context = descriptor.context
        dom_context = None
        if context is not None:
            dom_context = DomContext(
                ancestor_path=[ElementInfoModel.from_info(item) for item in context.ancestor_path],
                siblings=[ElementInfoModel.from_info(item) for item in context.siblings],
            )
        return cls(
            text=text,
            url=url,
            author_name=author_name,
            parent_id=parent_id,
            element_selector=descriptor.css_selector,
            element_x_path=descriptor.xpath,
            element_id=descriptor.stable_id,
            element_text=descriptor.text_snapshot,
            bounding_rect=None if rect is None else BoundingRect(x=rect.x, y=rect.y, width=rect.width, height=rect.height),
            click_offset=None if offset is None else ClickOffsetModel(dx=offset.dx, dy=offset.dy),
            dom_context=dom_context,
            computed_styles=None if context is None else dict(context.computed_styles),
            attributes=None if context is None else dict(context.attributes),
        )


class Comment(AnchorFields):
    id: str
    text: str
    url: str
    author_name: str | None = None
    parent_id: str | None = None
    thread_id: str
    resolved: bool | None = None
    created_at: str
    updated_at: str

    def anchor_key(self) -> tuple:
        return (self.id, *self.to_descriptor().identity_key())
