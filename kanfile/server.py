#!/usr/bin/env python3
"""
kanfile HTTP API
----------------
Serves the same operations as the CLI as a JSON API over one data file.
Every response is the standard envelope {success, api_version, data, error}.

Usage:
    kanfile-server --file ~/kanban.json --port 8090

API:
    GET    /api/health
    GET    /api/boards                      POST /api/boards
    GET    /api/boards/<id>                 PUT  /api/boards/<id>     DELETE /api/boards/<id>
    GET    /api/boards/<id>/columns         POST /api/boards/<id>/columns
    GET    /api/boards/<id>/sprints         POST /api/boards/<id>/sprints
    GET    /api/columns/<id>                PUT  /api/columns/<id>    DELETE /api/columns/<id>
    GET    /api/cards?board=&column=&sprint=&status=
    GET    /api/archived?board=
    POST   /api/cards
    GET    /api/cards/<id>                  PUT  /api/cards/<id>      DELETE /api/cards/<id>
    POST   /api/cards/<id>/move|archive|restore|sprint    DELETE /api/cards/<id>/sprint
    GET    /api/sprints/<id>                PUT  /api/sprints/<id>    DELETE /api/sprints/<id>
    POST   /api/sprints/<id>/activate|complete|cancel
    GET    /api/export?board=               POST /api/import

Mutating routes require X-API-Key when an API key is configured.
"""
import argparse
import hmac
import json
import logging
import sys
import threading
from functools import wraps
from typing import Any, Callable, Optional

from flask import Flask, jsonify, request

from .config import Config
from .driver import failure, success
from .errors import ConflictError, KanbanError, NotFoundError, ValidationError
from .graph import CardEdgeType
from .schema import BoardUpdate, CardFilter, CardStatus, CardUpdate, ColumnUpdate, SprintUpdate
from .workspace import Workspace

logger = logging.getLogger(__name__)

_STATUS = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
}


def _error_status(error: Exception) -> int:
    if isinstance(error, KanbanError):
        return _STATUS.get(error.kind, 500)
    return 500


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require(data: dict, key: str) -> Any:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{key} is required")
    return value


def create_app(workspace: Workspace, api_key: Optional[str] = None) -> Flask:
    """Build the Flask app around an opened workspace."""
    app = Flask(__name__)
    lock = threading.Lock()

    def require_api_key(f):
        """Decorator: reject requests without a valid X-API-Key header."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not api_key:
                return f(*args, **kwargs)
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, api_key):
                code = 401 if not provided else 403
                return jsonify(failure(ValidationError("Unauthorized")).to_dict()), code
            return f(*args, **kwargs)
        return decorated

    def respond(fn: Callable[[], Any], status: int = 200):
        """Run fn under the workspace lock, persist changes and wrap the result."""
        with lock:
            try:
                workspace.poll_external_changes()
                data = fn()
                if data is None and request.method == "GET":
                    raise NotFoundError(request.path)
                if workspace.dirty and not workspace.save():
                    raise ConflictError(str(workspace.path), "newer external version was loaded; request not applied")
                return jsonify(success(data).to_dict()), status
            except (KanbanError, ValueError, TypeError) as e:
                if not isinstance(e, KanbanError):
                    e = ValidationError(str(e))
                logger.info(f"{request.method} {request.path} failed: {e}")
                return jsonify(failure(e).to_dict()), _error_status(e)
            except Exception as e:
                logger.exception(f"{request.method} {request.path} failed")
                return jsonify(failure(e).to_dict()), 500

    # ── Health ──

    @app.route("/api/health")
    def api_health():
        return respond(lambda: {
            "status": "ok",
            "data_file": str(workspace.path),
            "boards": len(workspace.snapshot.boards),
            "persistence_enabled": workspace.persistence_enabled,
        })

    # ── Boards ──

    @app.route("/api/boards", methods=["GET"])
    def api_list_boards():
        return respond(workspace.list_boards)

    @app.route("/api/boards", methods=["POST"])
    @require_api_key
    def api_create_board():
        def create():
            data = _body()
            return workspace.create_board(
                _require(data, "name"), data.get("card_prefix"),
                data.get("description"), data.get("sprint_prefix"),
            )
        return respond(create, 201)

    @app.route("/api/boards/<board_id>", methods=["GET"])
    def api_get_board(board_id):
        return respond(lambda: workspace.get_board(board_id))

    @app.route("/api/boards/<board_id>", methods=["PUT"])
    @require_api_key
    def api_update_board(board_id):
        return respond(lambda: workspace.update_board(board_id, BoardUpdate.from_payload(_body())))

    @app.route("/api/boards/<board_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_board(board_id):
        return respond(lambda: workspace.delete_board(board_id))

    # ── Columns ──

    @app.route("/api/boards/<board_id>/columns", methods=["GET"])
    def api_list_columns(board_id):
        return respond(lambda: workspace.list_columns(board_id))

    @app.route("/api/boards/<board_id>/columns", methods=["POST"])
    @require_api_key
    def api_create_column(board_id):
        def create():
            data = _body()
            return workspace.create_column(board_id, _require(data, "name"),
                                           data.get("position"), data.get("wip_limit"))
        return respond(create, 201)

    @app.route("/api/columns/<column_id>", methods=["GET"])
    def api_get_column(column_id):
        return respond(lambda: workspace.get_column(column_id))

    @app.route("/api/columns/<column_id>", methods=["PUT"])
    @require_api_key
    def api_update_column(column_id):
        return respond(lambda: workspace.update_column(column_id, ColumnUpdate.from_payload(_body())))

    @app.route("/api/columns/<column_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_column(column_id):
        return respond(lambda: workspace.delete_column(column_id))

    # ── Cards ──

    @app.route("/api/cards", methods=["GET"])
    def api_list_cards():
        def list_cards():
            status = request.args.get("status")
            return workspace.list_cards(CardFilter(
                board_id=request.args.get("board"),
                column_id=request.args.get("column"),
                sprint_id=request.args.get("sprint"),
                status=CardStatus.from_str(status) if status else None,
            ))
        return respond(list_cards)

    @app.route("/api/cards", methods=["POST"])
    @require_api_key
    def api_create_card():
        def create():
            data = _body()
            extra = CardUpdate.from_payload(
                {k: data[k] for k in ("description", "priority", "points", "due_date") if k in data})
            card = workspace.create_card(
                _require(data, "board_id"), _require(data, "column_id"), _require(data, "title"),
                data.get("position"), data.get("prefix"),
            )
            if not extra.is_empty():
                card = workspace.update_card(card.id, extra)
            return card
        return respond(create, 201)

    @app.route("/api/archived", methods=["GET"])
    def api_list_archived():
        return respond(lambda: workspace.list_archived_cards(request.args.get("board")))

    @app.route("/api/cards/<card_id>", methods=["GET"])
    def api_get_card(card_id):
        return respond(lambda: workspace.get_card(card_id))

    @app.route("/api/cards/<card_id>", methods=["PUT"])
    @require_api_key
    def api_update_card(card_id):
        return respond(lambda: workspace.update_card(card_id, CardUpdate.from_payload(_body())))

    @app.route("/api/cards/<card_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_card(card_id):
        return respond(lambda: workspace.delete_card(card_id))

    @app.route("/api/cards/<card_id>/move", methods=["POST"])
    @require_api_key
    def api_move_card(card_id):
        def move():
            data = _body()
            return workspace.move_card(card_id, _require(data, "column_id"), data.get("position"))
        return respond(move)

    @app.route("/api/cards/<card_id>/archive", methods=["POST"])
    @require_api_key
    def api_archive_card(card_id):
        return respond(lambda: workspace.archive_card(card_id))

    @app.route("/api/cards/<card_id>/restore", methods=["POST"])
    @require_api_key
    def api_restore_card(card_id):
        def restore():
            data = _body()
            return workspace.restore_card(card_id, data.get("column_id"), data.get("position"))
        return respond(restore)

    @app.route("/api/cards/<card_id>/sprint", methods=["POST"])
    @require_api_key
    def api_assign_sprint(card_id):
        return respond(lambda: workspace.assign_card_to_sprint(card_id, _require(_body(), "sprint_id")))

    @app.route("/api/cards/<card_id>/sprint", methods=["DELETE"])
    @require_api_key
    def api_unassign_sprint(card_id):
        return respond(lambda: workspace.unassign_card_from_sprint(card_id))

    @app.route("/api/cards/<card_id>/dependencies", methods=["GET"])
    def api_card_dependencies(card_id):
        return respond(lambda: workspace.card_dependencies(card_id))

    @app.route("/api/cards/<card_id>/dependencies", methods=["POST"])
    @require_api_key
    def api_add_dependency(card_id):
        def add():
            data = _body()
            edge_type = CardEdgeType.from_str(data.get("type") or "Blocks")
            return workspace.add_card_dependency(card_id, _require(data, "target_id"), edge_type)
        return respond(add, 201)

    # ── Sprints ──

    @app.route("/api/boards/<board_id>/sprints", methods=["GET"])
    def api_list_sprints(board_id):
        return respond(lambda: workspace.list_sprints(board_id))

    @app.route("/api/boards/<board_id>/sprints", methods=["POST"])
    @require_api_key
    def api_create_sprint(board_id):
        def create():
            data = _body()
            return workspace.create_sprint(board_id, data.get("prefix"), data.get("name"),
                                           data.get("card_prefix"))
        return respond(create, 201)

    @app.route("/api/sprints/<sprint_id>", methods=["GET"])
    def api_get_sprint(sprint_id):
        return respond(lambda: workspace.get_sprint(sprint_id))

    @app.route("/api/sprints/<sprint_id>", methods=["PUT"])
    @require_api_key
    def api_update_sprint(sprint_id):
        return respond(lambda: workspace.update_sprint(sprint_id, SprintUpdate.from_payload(_body())))

    @app.route("/api/sprints/<sprint_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_sprint(sprint_id):
        return respond(lambda: workspace.delete_sprint(sprint_id))

    @app.route("/api/sprints/<sprint_id>/activate", methods=["POST"])
    @require_api_key
    def api_activate_sprint(sprint_id):
        return respond(lambda: workspace.activate_sprint(sprint_id, _body().get("duration_days")))

    @app.route("/api/sprints/<sprint_id>/complete", methods=["POST"])
    @require_api_key
    def api_complete_sprint(sprint_id):
        return respond(lambda: workspace.complete_sprint(sprint_id))

    @app.route("/api/sprints/<sprint_id>/cancel", methods=["POST"])
    @require_api_key
    def api_cancel_sprint(sprint_id):
        return respond(lambda: workspace.cancel_sprint(sprint_id))

    # ── Import / export ──

    @app.route("/api/export", methods=["GET"])
    def api_export():
        return respond(lambda: json.loads(workspace.export_board(request.args.get("board"))))

    @app.route("/api/import", methods=["POST"])
    @require_api_key
    def api_import():
        return respond(lambda: workspace.import_boards(request.get_data(as_text=True)), 201)

    return app


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="kanfile-server", description="kanfile JSON API")
    parser.add_argument("--file", "-f", help="Data file")
    parser.add_argument("--config", help="Config YAML path")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--no-watch", action="store_true", help="Do not watch the file for external changes")
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.WARNING),
        format="%(asctime)s [kanfile] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    workspace = Workspace(args.file or config.data_file, config=config)
    try:
        workspace.open()
    except KanbanError as e:
        logger.error(f"Cannot open {workspace.path}: {e}")
        return 1
    if not args.no_watch:
        workspace.start_watching()

    app = create_app(workspace, config.api_key)
    try:
        app.run(host=args.host or config.api_host, port=args.port or config.api_port)
    finally:
        workspace.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
