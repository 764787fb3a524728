"""
Board import/export.

Export format:
  {"boards": [{"board": {...}, "columns": [...], "cards": [...],
               "archived_cards": [...], "sprints": [...], "dependencies": [...]}]}

Import accepts that format, a single board export, a bare snapshot or a
v2 data file. Every imported entity gets a fresh id; references between
imported entities are remapped.
"""
import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .commands import Command, CommandContext
from .errors import SerializationError, ValidationError
from .graph import Edge, Graph
from .schema import ArchivedCard, Board, Card, Column, Sprint, new_id, utc_now
from .serializer import is_envelope
from .snapshot import Snapshot


@dataclass
class BoardExport:
    board: Board
    columns: List[Column] = field(default_factory=list)
    cards: List[Card] = field(default_factory=list)
    archived_cards: List[ArchivedCard] = field(default_factory=list)
    sprints: List[Sprint] = field(default_factory=list)
    dependencies: List[Edge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "board": self.board.to_dict(),
            "columns": [c.to_dict() for c in self.columns],
            "cards": [c.to_dict() for c in self.cards],
            "archived_cards": [a.to_dict() for a in self.archived_cards],
            "sprints": [s.to_dict() for s in self.sprints],
            "dependencies": [e.to_dict() for e in self.dependencies],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardExport":
        return cls(
            board=Board.from_dict(data["board"]),
            columns=[Column.from_dict(c) for c in data.get("columns") or []],
            cards=[Card.from_dict(c) for c in data.get("cards") or []],
            archived_cards=[ArchivedCard.from_dict(a) for a in data.get("archived_cards") or []],
            sprints=[Sprint.from_dict(s) for s in data.get("sprints") or []],
            dependencies=[Edge.from_dict(e) for e in data.get("dependencies") or []],
        )


@dataclass
class AllBoardsExport:
    boards: List[BoardExport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"boards": [b.to_dict() for b in self.boards]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


def export_board(snapshot: Snapshot, board: Board) -> BoardExport:
    column_ids = {c.id for c in snapshot.columns if c.board_id == board.id}
    cards = [c for c in snapshot.cards if c.column_id in column_ids]
    archived = [a for a in snapshot.archived_cards if a.original_column_id in column_ids]
    card_ids = {c.id for c in cards} | {a.card.id for a in archived}
    return BoardExport(
        board=copy.deepcopy(board),
        columns=copy.deepcopy([c for c in snapshot.columns if c.board_id == board.id]),
        cards=copy.deepcopy(cards),
        archived_cards=copy.deepcopy(archived),
        sprints=copy.deepcopy([s for s in snapshot.sprints if s.board_id == board.id]),
        dependencies=copy.deepcopy([
            e for e in snapshot.graph.cards.edges
            if e.source in card_ids and e.target in card_ids
        ]),
    )


def export_all(snapshot: Snapshot) -> AllBoardsExport:
    return AllBoardsExport([export_board(snapshot, b) for b in snapshot.boards])


def parse_import(text: str) -> AllBoardsExport:
    """Parse any accepted import document into an AllBoardsExport."""
    try:
        document = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise SerializationError(f"Import is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise SerializationError("Import document must be a JSON object")

    if is_envelope(document):
        return export_all(Snapshot.from_dict(document.get("data") or {}))
    try:
        if "board" in document:
            return AllBoardsExport([BoardExport.from_dict(document)])
        entries = document.get("boards") or []
        if entries and all(isinstance(e, dict) and "board" in e for e in entries):
            return AllBoardsExport([BoardExport.from_dict(e) for e in entries])
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise SerializationError(f"Malformed board export: {e}") from e
    return export_all(Snapshot.from_dict(document))


class ImportBoards(Command):
    """Add exported boards to the workspace under fresh ids."""

    def __init__(self, export: AllBoardsExport):
        self.export = export

    def _check(self, item: BoardExport) -> None:
        column_ids = {c.id for c in item.columns}
        for card in item.cards:
            if card.column_id not in column_ids:
                raise ValidationError(f"Imported card '{card.title}' references unknown column {card.column_id}")
        for archived in item.archived_cards:
            if archived.original_column_id not in column_ids:
                raise ValidationError(
                    f"Imported archived card '{archived.card.title}' references unknown column "
                    f"{archived.original_column_id}"
                )

        # Dependencies among the imported cards must be acyclic on their own;
        # fresh ids keep them apart from the existing graph
        card_ids = {c.id for c in item.cards} | {a.card.id for a in item.archived_cards}
        scratch = Graph()
        for edge in item.dependencies:
            if edge.source not in card_ids or edge.target not in card_ids:
                continue
            if edge.source == edge.target:
                raise ValidationError(f"Imported dependency links card {edge.source} to itself")
            if edge.is_active:
                scratch.add_edge(edge)

    def execute(self, context: CommandContext) -> None:
        if not self.export.boards:
            raise ValidationError("Import contains no boards")
        for item in self.export.boards:
            self._check(item)

        imported: List[Board] = []
        for item in self.export.boards:
            imported.append(self._import_one(context, copy.deepcopy(item)))
        self.result = imported

    def _import_one(self, context: CommandContext, item: BoardExport) -> Board:
        ids: Dict[str, str] = {}

        def remap(old: Optional[str]) -> Optional[str]:
            if old is None:
                return None
            return ids.get(old, old)

        now = utc_now()
        board = item.board
        ids[board.id] = board.id = new_id()
        for column in item.columns:
            ids[column.id] = new_id()
        for sprint in item.sprints:
            ids[sprint.id] = new_id()
        for card in item.cards + [a.card for a in item.archived_cards]:
            ids[card.id] = new_id()

        board.active_sprint_id = remap(board.active_sprint_id) if board.active_sprint_id in ids else None
        board.updated_at = now
        for column in item.columns:
            column.id = ids[column.id]
            column.board_id = board.id
        for sprint in item.sprints:
            sprint.id = ids[sprint.id]
            sprint.board_id = board.id

        def fix_card(card: Card) -> None:
            card.id = ids[card.id]
            card.column_id = remap(card.column_id)
            card.sprint_id = card.sprint_id if card.sprint_id in ids else None
            card.sprint_id = remap(card.sprint_id)
            for log in card.sprint_logs:
                log.sprint_id = remap(log.sprint_id)

        for card in item.cards:
            fix_card(card)
        for archived in item.archived_cards:
            fix_card(archived.card)
            archived.original_column_id = remap(archived.original_column_id)

        context.boards.append(board)
        context.columns.extend(item.columns)
        context.sprints.extend(item.sprints)
        context.cards.extend(item.cards)
        context.archived_cards.extend(item.archived_cards)
        for edge in item.dependencies:
            if edge.source in ids and edge.target in ids:
                edge.source = ids[edge.source]
                edge.target = ids[edge.target]
                if edge.is_active:
                    context.graph.cards.add_edge(edge)
                elif not any(existing.same_link(edge) for existing in context.graph.cards.edges):
                    context.graph.cards.edges.append(edge)
        return board

    def description(self) -> str:
        return f"Import {len(self.export.boards)} board(s)"
