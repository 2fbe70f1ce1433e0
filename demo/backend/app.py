import json
import logging
import os
import uuid
from datetime import datetime, timezone

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from pydantic import ValidationError

from reviewpin.core.comments import BoundingRect, ClickOffsetModel, Comment, CreateCommentRequest, DomContext

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

db = SQLAlchemy()

PATCHABLE_FIELDS = {
    "text": "text",
    "resolved": "resolved",
    "authorName": "author_name",
    "elementSelector": "element_selector",
    "elementXPath": "element_xpath",
    "elementId": "element_id",
    "elementText": "element_text",
}

DEMO_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>reviewpin demo</title>
  <style>
    body { font-family: sans-serif; margin: 0; }
    nav a { margin-right: 12px; }
    main { padding: 24px; min-height: 2400px; }
    .hero-title { font-size: 32px; }
    .card { border: 1px solid #ccc; padding: 12px; margin: 12px 0; width: 320px; }
    .collapsed { display: none; }
  </style>
</head>
<body>
  <nav>
    <a href="/" data-route="home">Home</a>
    <a href="/settings" data-route="settings">Settings</a>
  </nav>
  <main id="view">
    <h1 class="hero-title">Quarterly report</h1>
    <div class="card"><p>Revenue grew in every region.</p></div>
    <div class="card"><p>Churn is flat.</p><button id="save-btn" type="button">Save</button></div>
  </main>
  <div id="reviewcycle-root"><button class="rc-floating-button" type="button">Comment</button></div>
  <script>
    const views = {
      home: document.getElementById("view").innerHTML,
      settings: '<h1 class="hero-title">Settings</h1><div class="card"><p>Notifications</p></div>',
    };
    document.querySelectorAll("nav a").forEach((link) => {
      link.addEventListener("click", (event) => {
        event.preventDefault();
        const route = link.dataset.route;
        history.pushState({route: route}, "", link.getAttribute("href"));
        setTimeout(() => { document.getElementById("view").innerHTML = views[route]; }, 30);
      });
    });
    window.addEventListener("popstate", (event) => {
      const route = (event.state && event.state.route) || "home";
      document.getElementById("view").innerHTML = views[route];
    });
  </script>
</body>
</html>
"""


class CommentRecord(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.String(32), primary_key=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    url = db.Column(db.String(2048), nullable=False, index=True)
    author_name = db.Column(db.String(255), nullable=True)
    element_selector = db.Column(db.Text, nullable=True)
    element_xpath = db.Column(db.Text, nullable=True)
    element_id = db.Column(db.String(64), nullable=True)
    element_text = db.Column(db.Text, nullable=True)
    bounding_rect = db.Column(db.Text, nullable=True)
    click_offset = db.Column(db.Text, nullable=True)
    dom_context = db.Column(db.Text, nullable=True)
    computed_styles = db.Column(db.Text, nullable=True)
    attributes = db.Column(db.Text, nullable=True)
    parent_id = db.Column(db.String(32), nullable=True)
    thread_id = db.Column(db.String(32), nullable=False, index=True)
    resolved = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_comment(self) -> Comment:
        return Comment(
            id=self.id,
            text=self.text,
            url=self.url,
            author_name=self.author_name,
            element_selector=self.element_selector,
            element_x_path=self.element_xpath,
            element_id=self.element_id,
            element_text=self.element_text,
            bounding_rect=BoundingRect.model_validate(json.loads(self.bounding_rect)) if self.bounding_rect else None,
            click_offset=ClickOffsetModel.model_validate(json.loads(self.click_offset)) if self.click_offset else None,
            dom_context=DomContext.model_validate(json.loads(self.dom_context)) if self.dom_context else None,
            computed_styles=json.loads(self.computed_styles) if self.computed_styles else None,
            attributes=json.loads(self.attributes) if self.attributes else None,
            parent_id=self.parent_id,
            thread_id=self.thread_id,
            resolved=self.resolved,
            created_at=self.created_at.isoformat(),
            updated_at=self.updated_at.isoformat(),
        )


def error_response(message, code, status):
    return jsonify({"error": message, "code": code}), status


def create_app(config=None):
    app = Flask(__name__)
    CORS(app)
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///reviewpin-demo.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["DEFAULT_PROJECT_ID"] = os.environ.get("DEFAULT_PROJECT_ID", "rc_proj_demo123")
    if config:
        app.config.update(config)
    db.init_app(app)
    with app.app_context():
        db.create_all()

    @app.route("/")
    @app.route("/settings")
    def demo_page():
        return Response(DEMO_PAGE, mimetype="text/html")

    @app.route("/api/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/api/projects/<project_id>/comments", methods=["GET"])
    def list_comments(project_id):
        url = request.args.get("url", "").strip()
        query = CommentRecord.query.filter_by(project_id=project_id)
        if url:
            query = query.filter_by(url=url)
        records = query.order_by(CommentRecord.created_at.asc()).all()
        return jsonify({"comments": [record.to_comment().to_wire() for record in records]}), 200

    @app.route("/api/projects/<project_id>/comments", methods=["POST"])
    def create_comment(project_id):
        data = request.get_json(silent=True)
        if not data:
            return error_response("Request body must be JSON", "VALIDATION_ERROR", 400)
        try:
            payload = CreateCommentRequest.model_validate(data)
        except ValidationError as exc:
            return error_response(f"Invalid comment: {exc.errors()[0]['msg']}", "VALIDATION_ERROR", 400)
        if not payload.text.strip() or not payload.url.strip():
            return error_response("Missing required fields: text, url", "VALIDATION_ERROR", 400)

        comment_id = uuid.uuid4().hex
        thread_id = comment_id
        if payload.parent_id:
            parent = CommentRecord.query.filter_by(project_id=project_id, id=payload.parent_id).first()
            if not parent:
                return error_response("Parent comment not found", "PARENT_NOT_FOUND", 404)
            thread_id = parent.thread_id

        record = CommentRecord(
            id=comment_id,
            project_id=project_id,
            text=payload.text,
            url=payload.url,
            author_name=payload.author_name,
            element_selector=payload.element_selector,
            element_xpath=payload.element_x_path,
            element_id=payload.element_id,
            element_text=payload.element_text,
            bounding_rect=payload.bounding_rect.model_dump_json() if payload.bounding_rect else None,
            click_offset=payload.click_offset.model_dump_json() if payload.click_offset else None,
            dom_context=json.dumps(payload.dom_context.to_wire()) if payload.dom_context else None,
            computed_styles=json.dumps(payload.computed_styles) if payload.computed_styles is not None else None,
            attributes=json.dumps(payload.attributes) if payload.attributes is not None else None,
            parent_id=payload.parent_id,
            thread_id=thread_id,
        )
        db.session.add(record)
        db.session.commit()
        log.info("Created comment %s in thread %s", comment_id, thread_id)
        return jsonify({"comment": record.to_comment().to_wire()}), 201

    @app.route("/api/projects/<project_id>/comments/<comment_id>", methods=["GET"])
    def get_comment(project_id, comment_id):
        record = CommentRecord.query.filter_by(project_id=project_id, id=comment_id).first()
        if not record:
            return error_response("Comment not found", "NOT_FOUND", 404)
        return jsonify({"comment": record.to_comment().to_wire()}), 200

    @app.route("/api/projects/<project_id>/comments/<comment_id>", methods=["PATCH"])
    def update_comment(project_id, comment_id):
        data = request.get_json(silent=True)
        if not data:
            return error_response("Request body must be JSON", "VALIDATION_ERROR", 400)
        record = CommentRecord.query.filter_by(project_id=project_id, id=comment_id).first()
        if not record:
            return error_response("Comment not found", "NOT_FOUND", 404)
        unknown = sorted(set(data) - set(PATCHABLE_FIELDS))
        if unknown:
            return error_response(f"Fields cannot be updated: {', '.join(unknown)}", "VALIDATION_ERROR", 400)
        for wire_name, column in PATCHABLE_FIELDS.items():
            if wire_name in data:
                setattr(record, column, data[wire_name])
        record.updated_at = datetime.now(timezone.utc)
        db.session.commit()
        return jsonify({"comment": record.to_comment().to_wire()}), 200

    @app.route("/api/projects/<project_id>/comments/<comment_id>", methods=["DELETE"])
    def delete_comment(project_id, comment_id):
        record = CommentRecord.query.filter_by(project_id=project_id, id=comment_id).first()
        if not record:
            return error_response("Comment not found", "NOT_FOUND", 404)
        if record.id == record.thread_id:
            doomed = CommentRecord.query.filter_by(project_id=project_id, thread_id=record.thread_id).all()
        else:
            doomed = [record]
        deleted_ids = [item.id for item in doomed]
        for item in doomed:
            db.session.delete(item)
        db.session.commit()
        return jsonify({"deletedIds": deleted_ids}), 200

    @app.route("/api/projects/<project_id>/threads/<thread_id>", methods=["GET"])
    def get_thread(project_id, thread_id):
        records = (
            CommentRecord.query.filter_by(project_id=project_id, thread_id=thread_id)
            .order_by(CommentRecord.created_at.asc())
            .all()
        )
        return jsonify({"comments": [record.to_comment().to_wire() for record in records]}), 200

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
