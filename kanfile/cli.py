"""
kanfile command line.

Usage:
    kanfile [--file PATH] [--config PATH] <resource> <action> [args]

Resources: board, column, card, sprint, export, import.
Every invocation prints one response envelope on stdout and exits 0 on
success, 1 on any error. Logs go to stderr.

Update options accept the literal value "null" to clear an optional field.
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config
from .driver import Response, failure, success
from .errors import ConflictError, KanbanError, NotFoundError, ValidationError
from .graph import CardEdgeType
from .schema import (
    BoardUpdate,
    CardFilter,
    CardStatus,
    CardUpdate,
    ColumnUpdate,
    SortField,
    SortOrder,
    SprintUpdate,
    TaskListView,
)
from .workspace import Workspace

logger = logging.getLogger(__name__)

NULL = "null"


def _payload(args: argparse.Namespace, names: List[str]) -> Dict[str, Any]:
    """Collect the given options that were passed; "null" becomes None."""
    data = {}
    for name in names:
        value = getattr(args, name, None)
        if value is None:
            continue
        data[name] = None if value == NULL else value
    return data


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Handlers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def board_create(ws: Workspace, args):
    return ws.create_board(args.name, args.card_prefix, args.description, args.sprint_prefix)


def board_list(ws: Workspace, args):
    return ws.list_boards()


def board_get(ws: Workspace, args):
    return ws.get_board(args.id)


def board_update(ws: Workspace, args):
    data = _payload(args, ["name", "description", "card_prefix", "sprint_prefix", "sprint_duration_days"])
    if data.get("name") is None:
        data.pop("name", None)
    return ws.update_board(args.id, BoardUpdate.from_payload(data))


def board_delete(ws: Workspace, args):
    return ws.delete_board(args.id)


def board_sort(ws: Workspace, args):
    return ws.set_board_task_sort(args.id, SortField.from_str(args.field), SortOrder.from_str(args.order))


def board_view(ws: Workspace, args):
    return ws.set_board_task_list_view(args.id, TaskListView.from_str(args.view))


def column_create(ws: Workspace, args):
    return ws.create_column(args.board_id, args.name, args.position, args.wip_limit)


def column_list(ws: Workspace, args):
    return ws.list_columns(args.board_id)


def column_get(ws: Workspace, args):
    return ws.get_column(args.id)


def column_update(ws: Workspace, args):
    return ws.update_column(args.id, ColumnUpdate.from_payload(_payload(args, ["name", "position", "wip_limit"])))


def column_delete(ws: Workspace, args):
    return ws.delete_column(args.id)


def column_reorder(ws: Workspace, args):
    return ws.reorder_column(args.id, args.position)


def card_create(ws: Workspace, args):
    extra = CardUpdate.from_payload(_payload(args, ["description", "priority", "points"]))
    card = ws.create_card(args.board_id, args.column_id, args.title, args.position, args.prefix)
    if not extra.is_empty():
        card = ws.update_card(card.id, extra)
    return card


def card_list(ws: Workspace, args):
    status = CardStatus.from_str(args.status) if args.status else None
    return ws.list_cards(CardFilter(args.board, args.column, args.sprint, status))


def card_get(ws: Workspace, args):
    return ws.get_card(args.id)


def card_update(ws: Workspace, args):
    data = _payload(args, ["title", "description", "priority", "status", "position", "points", "due_date"])
    return ws.update_card(args.id, CardUpdate.from_payload(data))


def card_move(ws: Workspace, args):
    return ws.move_card(args.id, args.column_id, args.position)


def card_archive(ws: Workspace, args):
    return ws.archive_card(args.id)


def card_restore(ws: Workspace, args):
    return ws.restore_card(args.id, args.column)


def card_delete(ws: Workspace, args):
    return ws.delete_card(args.id)


def card_archived(ws: Workspace, args):
    return ws.list_archived_cards(args.board)


def card_assign(ws: Workspace, args):
    return ws.assign_card_to_sprint(args.id, args.sprint_id)


def card_unassign(ws: Workspace, args):
    return ws.unassign_card_from_sprint(args.id)


def card_bulk_archive(ws: Workspace, args):
    return ws.bulk_archive_cards(args.ids)


def card_bulk_move(ws: Workspace, args):
    return ws.bulk_move_cards(args.ids, args.column_id)


def card_bulk_assign(ws: Workspace, args):
    return ws.bulk_assign_sprint(args.ids, args.sprint_id)


def card_depend(ws: Workspace, args):
    return ws.add_card_dependency(args.source, args.target, CardEdgeType.from_str(args.type))


def card_undepend(ws: Workspace, args):
    return ws.remove_card_dependency(args.source, args.target, CardEdgeType.from_str(args.type))


def card_deps(ws: Workspace, args):
    return ws.card_dependencies(args.id)


def sprint_create(ws: Workspace, args):
    return ws.create_sprint(args.board_id, args.prefix, args.name, args.card_prefix)


def sprint_list(ws: Workspace, args):
    return ws.list_sprints(args.board_id)


def sprint_get(ws: Workspace, args):
    return ws.get_sprint(args.id)


def sprint_update(ws: Workspace, args):
    data = _payload(args, ["name", "prefix", "card_prefix", "start_date", "end_date"])
    return ws.update_sprint(args.id, SprintUpdate.from_payload(data))


def sprint_activate(ws: Workspace, args):
    return ws.activate_sprint(args.id, args.days)


def sprint_complete(ws: Workspace, args):
    return ws.complete_sprint(args.id)


def sprint_cancel(ws: Workspace, args):
    return ws.cancel_sprint(args.id)


def sprint_delete(ws: Workspace, args):
    return ws.delete_sprint(args.id)


def export_run(ws: Workspace, args):
    text = ws.export_board(args.board)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        return {"path": args.output}
    return json.loads(text)


def import_run(ws: Workspace, args):
    if args.path == "-":
        text = sys.stdin.read()
    else:
        try:
            text = Path(args.path).read_text(encoding="utf-8")
        except OSError as e:
            raise ValidationError(f"Cannot read import file {args.path}: {e}") from e
    return ws.import_boards(text)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Parser
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _action(actions, name: str, handler, help_text: str):
    parser = actions.add_parser(name, help=help_text)
    parser.set_defaults(handler=handler)
    return parser


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kanfile", description="Kanban board in a JSON file")
    parser.add_argument("--file", "-f", help="Data file (default: from config, else kanban.json)")
    parser.add_argument("--config", help="Config YAML path")
    parser.add_argument("--log-level", help="Log level for stderr output")
    resources = parser.add_subparsers(dest="resource", required=True)

    # ── board ──
    board = resources.add_parser("board", help="Boards").add_subparsers(dest="action", required=True)
    p = _action(board, "create", board_create, "Create a board")
    p.add_argument("name")
    p.add_argument("--card-prefix")
    p.add_argument("--sprint-prefix")
    p.add_argument("--description")
    _action(board, "list", board_list, "List boards")
    _action(board, "get", board_get, "Show a board").add_argument("id")
    p = _action(board, "update", board_update, "Update a board")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--description")
    p.add_argument("--card-prefix")
    p.add_argument("--sprint-prefix")
    p.add_argument("--sprint-duration-days")
    _action(board, "delete", board_delete, "Delete a board and everything on it").add_argument("id")
    p = _action(board, "sort", board_sort, "Set the card sort order")
    p.add_argument("id")
    p.add_argument("field")
    p.add_argument("order", nargs="?", default="Ascending")
    p = _action(board, "view", board_view, "Set the card list view")
    p.add_argument("id")
    p.add_argument("view")

    # ── column ──
    column = resources.add_parser("column", help="Columns").add_subparsers(dest="action", required=True)
    p = _action(column, "create", column_create, "Create a column")
    p.add_argument("board_id")
    p.add_argument("name")
    p.add_argument("--position", type=int)
    p.add_argument("--wip-limit", type=int)
    _action(column, "list", column_list, "List a board's columns").add_argument("board_id")
    _action(column, "get", column_get, "Show a column").add_argument("id")
    p = _action(column, "update", column_update, "Update a column")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--position")
    p.add_argument("--wip-limit")
    _action(column, "delete", column_delete, "Delete an empty column").add_argument("id")
    p = _action(column, "reorder", column_reorder, "Move a column")
    p.add_argument("id")
    p.add_argument("position", type=int)

    # ── card ──
    card = resources.add_parser("card", help="Cards").add_subparsers(dest="action", required=True)
    p = _action(card, "create", card_create, "Create a card")
    p.add_argument("board_id")
    p.add_argument("column_id")
    p.add_argument("title")
    p.add_argument("--position", type=int)
    p.add_argument("--prefix")
    p.add_argument("--description")
    p.add_argument("--priority")
    p.add_argument("--points", type=int)
    p = _action(card, "list", card_list, "List cards")
    p.add_argument("--board")
    p.add_argument("--column")
    p.add_argument("--sprint")
    p.add_argument("--status")
    _action(card, "get", card_get, "Show a card").add_argument("id")
    p = _action(card, "update", card_update, "Update a card")
    p.add_argument("id")
    p.add_argument("--title")
    p.add_argument("--description")
    p.add_argument("--priority")
    p.add_argument("--status")
    p.add_argument("--position")
    p.add_argument("--points")
    p.add_argument("--due-date")
    p = _action(card, "move", card_move, "Move a card to a column")
    p.add_argument("id")
    p.add_argument("column_id")
    p.add_argument("--position", type=int)
    _action(card, "archive", card_archive, "Archive a card").add_argument("id")
    p = _action(card, "restore", card_restore, "Restore an archived card")
    p.add_argument("id")
    p.add_argument("--column")
    _action(card, "delete", card_delete, "Delete a card").add_argument("id")
    _action(card, "archived", card_archived, "List archived cards").add_argument("--board")
    p = _action(card, "assign", card_assign, "Assign a card to a sprint")
    p.add_argument("id")
    p.add_argument("sprint_id")
    _action(card, "unassign", card_unassign, "Remove a card from its sprint").add_argument("id")
    _action(card, "bulk-archive", card_bulk_archive, "Archive several cards").add_argument("ids", nargs="+")
    p = _action(card, "bulk-move", card_bulk_move, "Move several cards")
    p.add_argument("column_id")
    p.add_argument("ids", nargs="+")
    p = _action(card, "bulk-assign", card_bulk_assign, "Assign several cards to a sprint")
    p.add_argument("sprint_id")
    p.add_argument("ids", nargs="+")
    for name, handler, help_text in (("depend", card_depend, "Add a dependency"),
                                     ("undepend", card_undepend, "Remove a dependency")):
        p = _action(card, name, handler, help_text)
        p.add_argument("source")
        p.add_argument("target")
        p.add_argument("--type", default="Blocks", help="Blocks or RelatesTo")
    _action(card, "deps", card_deps, "Show a card's dependencies").add_argument("id")

    # ── sprint ──
    sprint = resources.add_parser("sprint", help="Sprints").add_subparsers(dest="action", required=True)
    p = _action(sprint, "create", sprint_create, "Create a sprint")
    p.add_argument("board_id")
    p.add_argument("--prefix")
    p.add_argument("--name")
    p.add_argument("--card-prefix")
    _action(sprint, "list", sprint_list, "List a board's sprints").add_argument("board_id")
    _action(sprint, "get", sprint_get, "Show a sprint").add_argument("id")
    p = _action(sprint, "update", sprint_update, "Update a sprint")
    p.add_argument("id")
    p.add_argument("--name")
    p.add_argument("--prefix")
    p.add_argument("--card-prefix")
    p.add_argument("--start-date")
    p.add_argument("--end-date")
    p = _action(sprint, "activate", sprint_activate, "Start a sprint")
    p.add_argument("id")
    p.add_argument("--days", type=int)
    _action(sprint, "complete", sprint_complete, "Complete the sprint").add_argument("id")
    _action(sprint, "cancel", sprint_cancel, "Cancel the sprint").add_argument("id")
    _action(sprint, "delete", sprint_delete, "Delete a sprint").add_argument("id")

    # ── export / import ──
    p = resources.add_parser("export", help="Export boards as JSON")
    p.add_argument("--board")
    p.add_argument("--output", "-o")
    p.set_defaults(handler=export_run)
    p = resources.add_parser("import", help="Import boards from an export file")
    p.add_argument("path", help="Export file, or - for stdin")
    p.set_defaults(handler=import_run)

    return parser


def run(args: argparse.Namespace, config: Config) -> Response:
    """Execute one parsed command and build its envelope."""
    data_file = args.file or config.data_file
    try:
        ws = Workspace(data_file, config=config).open()
        data = args.handler(ws, args)
        if data is None and getattr(args, "action", None) == "get":
            raise NotFoundError(f"{args.resource} {args.id}")
        if ws.dirty and not ws.save():
            raise ConflictError(str(ws.path), "newer external version was loaded; command not applied")
        return success(data)
    except KanbanError as e:
        logger.info(f"{args.resource} {getattr(args, 'action', '')} failed: {e}")
        return failure(e)
    except (ValueError, TypeError) as e:
        return failure(ValidationError(str(e)))
    except Exception as e:
        logger.exception(f"Unexpected error in {args.resource}")
        return failure(e)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = Config.load(args.config)

    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.WARNING),
        format="%(asctime)s [kanfile] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    response = run(args, config)
    print(response.to_json())
    return 0 if response.success else 1


if __name__ == "__main__":
    sys.exit(main())
