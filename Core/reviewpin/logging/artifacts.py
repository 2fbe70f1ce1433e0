from __future__ import annotations

import logging
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path

from selenium.common.exceptions import WebDriverException

log = logging.getLogger(__name__)


class ArtifactManager:
    """Stores page evidence captured when an anchor goes missing."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.dom_root = self.root / "dom_snapshots"
        self.screenshot_root = self.root / "screenshots"
        self.run_log_root = self.root / "run_logs"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        for directory in (self.root, self.dom_root, self.screenshot_root, self.run_log_root):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")

    @staticmethod
    def _slug(value: str) -> str:
        return re.sub(r"[^A-Za-z0-9_.-]+", "_", value)[:80] or "anchor"

    def write_dom_snapshot(self, comment_id: str, page_source: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        path = self.dom_root / f"{stamp}_{self._slug(comment_id)}.html"
        path.write_text(page_source, encoding="utf-8")
        return path

    def screenshot_path(self, comment_id: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        return self.screenshot_root / f"{stamp}_{self._slug(comment_id)}.png"

    def capture_page(self, driver, comment_id: str) -> dict[str, str]:
        """Writes the DOM and a screenshot; returns whichever paths succeeded."""

        stamp = self.timestamp()
        paths: dict[str, str] = {}
        try:
            paths["dom_snapshot"] = str(self.write_dom_snapshot(comment_id, driver.page_source, stamp))
            screenshot = self.screenshot_path(comment_id, stamp)
            if driver.save_screenshot(str(screenshot)):
                paths["screenshot"] = str(screenshot)
        except WebDriverException as exc:
            log.warning("Could not capture page evidence for %s: %s", comment_id, exc.msg)
        return paths

    def write_run_log(self, message: str, timestamp: str | None = None) -> Path:
        stamp = timestamp or self.timestamp()
        path = self.run_log_root / f"{stamp}.log"
        path.write_text(message, encoding="utf-8")
        return path

    def reset(self) -> Path:
        self._ensure_structure()
        for child in self.root.iterdir():
            if child.is_file() and child.name != ".gitkeep":
                child.unlink()
        for directory in (self.dom_root, self.screenshot_root, self.run_log_root):
            self._clear_directory(directory)
        return self.root

    @staticmethod
    def _clear_directory(directory: Path) -> None:
        for child in directory.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            elif child.is_file() and child.name != ".gitkeep":
                child.unlink()
