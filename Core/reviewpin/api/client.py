from __future__ import annotations

import json
from typing import Any
from urllib import error, parse, request

from reviewpin.core.comments import Comment, CreateCommentRequest


class ApiError(RuntimeError):
    """Raised when the comment API answers with a non-2xx status."""

    def __init__(self, status: int, body: dict[str, Any]) -> None:
        super().__init__(body.get("error") or f"API request failed with status {status}")
        self.status = status
        self.body = body


class CommentApiClient:
    """REST client for the comment store the tracked anchors come from."""

    def __init__(self, base_url: str, project_id: str, api_key: str = "", timeout: float = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.api_key = api_key
        self.timeout = timeout

    def list_comments(self, url: str | None = None) -> list[Comment]:
        query = f"?{parse.urlencode({'url': url})}" if url else ""
        payload = self._request("GET", f"/comments{query}")
        return [Comment.model_validate(item) for item in payload["comments"]]

    def get_comment(self, comment_id: str) -> Comment:
        payload = self._request("GET", f"/comments/{parse.quote(comment_id)}")
        return Comment.model_validate(payload["comment"])

    def create_comment(self, create_request: CreateCommentRequest) -> Comment:
        payload = self._request("POST", "/comments", create_request.to_wire())
        return Comment.model_validate(payload["comment"])

    def update_comment(self, comment_id: str, updates: dict[str, Any]) -> Comment:
        payload = self._request("PATCH", f"/comments/{parse.quote(comment_id)}", updates)
        return Comment.model_validate(payload["comment"])

    def delete_comment(self, comment_id: str) -> list[str]:
        payload = self._request("DELETE", f"/comments/{parse.quote(comment_id)}")
        return list(payload.get("deletedIds", []))

    def get_thread(self, thread_id: str) -> list[Comment]:
        payload = self._request("GET", f"/threads/{parse.quote(thread_id)}")
        return [Comment.model_validate(item) for item in payload["comments"]]

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/api/projects/{parse.quote(self.project_id)}{path}"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = request.Request(url, data=data, headers=headers, method=method)
        try:
            with request.urlopen(req, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            try:
                parsed = json.loads(detail)
            except json.JSONDecodeError:
                parsed = {"error": detail}
            raise ApiError(exc.code, parsed) from exc
        except error.URLError as exc:
            raise RuntimeError(f"Comment API request could not be completed: {exc.reason}") from exc
        return json.loads(raw) if raw else {}
