from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from reviewpin.core.metadata import AnchorDescriptor, CaptureRecord, Resolution, ResolutionRecord
from reviewpin.logging.artifacts import ArtifactManager


class TrackingAuditLogger:
    """Persists anchor captures and liveness transitions as JSON lines."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.captures_path = self.root / "captures.jsonl"
        self.resolutions_path = self.root / "resolutions.jsonl"

    def write_capture(self, descriptor: AnchorDescriptor, url: str = "") -> CaptureRecord:
        record = CaptureRecord(
            stable_id=descriptor.stable_id or "",
            css_selector=descriptor.css_selector or "",
            xpath=descriptor.xpath or "",
            text_snapshot=descriptor.text_snapshot,
            url=url,
            timestamp=ArtifactManager.timestamp(),
        )
        self._append(self.captures_path, asdict(record))
        return record

    def write_transition(
        self,
        comment_id: str,
        *,
        transition: str,
        resolution: Resolution,
        url: str = "",
        artifact_paths: dict[str, str] | None = None,
    ) -> ResolutionRecord:
        record = ResolutionRecord(
            comment_id=comment_id,
            transition=transition,
            tier=resolution.tier.value if resolution.tier else None,
            outcome=resolution.outcome.value,
            url=url,
            timestamp=ArtifactManager.timestamp(),
            artifact_paths=artifact_paths or {},
        )
        self._append(self.resolutions_path, asdict(record))
        return record

    def read_transitions(self, comment_id: str | None = None) -> list[dict]:
        if not self.resolutions_path.exists():
            return []
        rows = []
        with self.resolutions_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                payload = json.loads(line)
                if comment_id is None or payload.get("comment_id") == comment_id:
                    rows.append(payload)
        return rows

    @staticmethod
    def _append(path: Path, payload: dict) -> None:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")
