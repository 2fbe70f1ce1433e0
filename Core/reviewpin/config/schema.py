from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from reviewpin.core.comments import Comment


class EnvironmentConfig(BaseModel):
    base_url: str
    api_base_url: str
    browser_matrix: list[str] = Field(default_factory=lambda: ["chrome"])
    default_timeout_seconds: int = 10
    headless: bool = False

    @field_validator("browser_matrix")
    @classmethod
    def validate_browsers(cls, value: list[str]) -> list[str]:
        allowed = {"chrome", "firefox"}
        normalized = [item.lower() for item in value]
        invalid = [item for item in normalized if item not in allowed]
        if invalid:
            raise ValueError(f"Unsupported browsers: {', '.join(invalid)}")
        return normalized


class TrackingSettings(BaseModel):
    debounce_ms: int = Field(default=50, ge=0)
    navigation_settle_ms: int = Field(default=100, ge=0)
    sweep_interval_ms: int = Field(default=2000, gt=0)
    poll_interval_ms: int = Field(default=25, gt=0)
    watched_attributes: list[str] = Field(default_factory=lambda: ["class", "style", "hidden"])
    intersection_thresholds: list[float] = Field(default_factory=lambda: [0, 0.1, 0.5, 1])
    marker_attribute: str = "data-rc-element-id"
    widget_root_id: str = "reviewcycle-root"
    widget_class_prefix: str = "rc-"
    widget_marker_class: str = "rc-hover-overlay"
    event_buffer_limit: int = Field(default=200, gt=0)

    @field_validator("marker_attribute")
    @classmethod
    def validate_marker_attribute(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized.startswith("data-"):
            raise ValueError("marker_attribute must be a data-* attribute")
        return normalized

    @field_validator("intersection_thresholds")
    @classmethod
    def validate_thresholds(cls, value: list[float]) -> list[float]:
        invalid = [item for item in value if item < 0 or item > 1]
        if invalid:
            raise ValueError(f"Intersection thresholds must be within [0, 1]: {invalid}")
        return sorted(set(value))

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def navigation_settle_seconds(self) -> float:
        return self.navigation_settle_ms / 1000

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_ms / 1000

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000


class ArtifactSettings(BaseModel):
    root: str = "artifacts"
    snapshot_on_loss: bool = True


class SuiteConfig(BaseModel):
    environment: EnvironmentConfig
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    artifacts: ArtifactSettings = Field(default_factory=ArtifactSettings)
    comments: list[Comment] = Field(default_factory=list)

    def get_comment(self, comment_id: str) -> Comment:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        raise KeyError(f"Unknown comment id: {comment_id}")
