"""
Programmatic command surface shared by the CLI, the HTTP API and drivers.

KanbanOperations turns each call into a command and runs it through
execute(); subclasses (the Workspace) override execute() to add history
and persistence. Queries read the snapshot directly.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .commands import (
    AddCardEdge,
    ArchiveCard,
    AssignCardToSprint,
    CancelSprint,
    Command,
    CommandContext,
    CompleteSprint,
    CreateBoard,
    CreateCard,
    CreateColumn,
    CreateSprint,
    DeleteBoard,
    DeleteCard,
    DeleteColumn,
    DeleteSprint,
    MoveCard,
    RemoveCardEdge,
    ReorderColumn,
    RestoreCard,
    UnassignCardFromSprint,
    UpdateBoard,
    UpdateCard,
    UpdateColumn,
    UpdateSprint,
    ActivateSprint,
    SetBoardTaskListView,
    SetBoardTaskSort,
)
from .errors import KanbanError, NotFoundError
from .exporter import ImportBoards, export_all, export_board, parse_import, AllBoardsExport
from .graph import CardEdgeType, Edge
from .schema import (
    DEFAULT_CARD_PREFIX,
    DEFAULT_SPRINT_DURATION_DAYS,
    DEFAULT_SPRINT_PREFIX,
    ArchivedCard,
    Board,
    BoardUpdate,
    Card,
    CardFilter,
    CardUpdate,
    Column,
    ColumnUpdate,
    SortField,
    SortOrder,
    Sprint,
    SprintUpdate,
    TaskListView,
    sort_cards,
)
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


@dataclass
class BulkFailure:
    id: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "error": self.error}


@dataclass
class BulkResult:
    """Outcome of a bulk operation; each id succeeds or fails on its own."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[BulkFailure] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": [f.to_dict() for f in self.failed],
        }


class KanbanOperations:
    """Every mutating and querying operation over one Snapshot."""

    def __init__(self, snapshot: Optional[Snapshot] = None,
                 card_prefix: str = DEFAULT_CARD_PREFIX,
                 sprint_prefix: str = DEFAULT_SPRINT_PREFIX,
                 sprint_duration_days: int = DEFAULT_SPRINT_DURATION_DAYS):
        self.snapshot = snapshot if snapshot is not None else Snapshot()
        self.default_card_prefix = card_prefix
        self.default_sprint_prefix = sprint_prefix
        self.default_sprint_duration_days = sprint_duration_days

    def execute(self, command: Command) -> Any:
        """Run a command against the current snapshot and return its result."""
        command.execute(CommandContext(self.snapshot))
        logger.debug(f"Executed {command.description()}")
        return command.result

    def _context(self) -> CommandContext:
        return CommandContext(self.snapshot)

    @staticmethod
    def _find(items, item_id: str):
        for item in items:
            if item.id == item_id:
                return item
        return None

    def _bulk(self, ids: List[str], make: Callable[[str], Command]) -> BulkResult:
        result = BulkResult()
        for item_id in ids:
            try:
                self.execute(make(item_id))
            except KanbanError as e:
                result.failed.append(BulkFailure(item_id, str(e)))
            else:
                result.succeeded.append(item_id)
        if result.failed:
            logger.info(f"Bulk operation: {len(result.succeeded)} succeeded, {len(result.failed)} failed")
        return result

    # ── Boards ──

    def create_board(self, name: str, card_prefix: Optional[str] = None,
                     description: Optional[str] = None,
                     sprint_prefix: Optional[str] = None) -> Board:
        return self.execute(CreateBoard(name, card_prefix, description, sprint_prefix))

    def list_boards(self) -> List[Board]:
        return sorted(self.snapshot.boards, key=lambda b: b.created_at)

    def get_board(self, board_id: str) -> Optional[Board]:
        return self._find(self.snapshot.boards, board_id)

    def update_board(self, board_id: str, update: BoardUpdate) -> Board:
        return self.execute(UpdateBoard(board_id, update))

    def delete_board(self, board_id: str) -> Board:
        return self.execute(DeleteBoard(board_id))

    def set_board_task_sort(self, board_id: str, sort_field: SortField,
                            order: SortOrder = SortOrder.ASCENDING) -> Board:
        return self.execute(SetBoardTaskSort(board_id, sort_field, order))

    def set_board_task_list_view(self, board_id: str, view: TaskListView) -> Board:
        return self.execute(SetBoardTaskListView(board_id, view))

    # ── Columns ──

    def create_column(self, board_id: str, name: str, position: Optional[int] = None,
                      wip_limit: Optional[int] = None) -> Column:
        return self.execute(CreateColumn(board_id, name, position, wip_limit))

    def list_columns(self, board_id: str) -> List[Column]:
        self._context().board(board_id)
        return self._context().board_columns(board_id)

    def get_column(self, column_id: str) -> Optional[Column]:
        return self._find(self.snapshot.columns, column_id)

    def update_column(self, column_id: str, update: ColumnUpdate) -> Column:
        return self.execute(UpdateColumn(column_id, update))

    def delete_column(self, column_id: str) -> Column:
        return self.execute(DeleteColumn(column_id))

    def reorder_column(self, column_id: str, position: int) -> Column:
        return self.execute(ReorderColumn(column_id, position))

    # ── Cards ──

    def create_card(self, board_id: str, column_id: str, title: str,
                    position: Optional[int] = None, prefix: Optional[str] = None) -> Card:
        return self.execute(CreateCard(board_id, column_id, title, position, prefix,
                                       default_prefix=self.default_card_prefix))

    def list_cards(self, card_filter: Optional[CardFilter] = None) -> List[Card]:
        """Cards matching the filter, in the board's sort order when a board is given."""
        card_filter = card_filter or CardFilter()
        column_boards = {c.id: c.board_id for c in self.snapshot.columns}
        cards = [c for c in self.snapshot.cards if card_filter.matches(c, column_boards)]

        board = self.get_board(card_filter.board_id) if card_filter.board_id else None
        if board is not None:
            return sort_cards(cards, board.task_sort_field, board.task_sort_order)
        column_order = {c.id: (c.position, c.created_at) for c in self.snapshot.columns}
        return sorted(cards, key=lambda c: (column_order.get(c.column_id, (0, c.created_at)),
                                            c.position, c.created_at))

    def get_card(self, card_id: str) -> Optional[Card]:
        return self._find(self.snapshot.cards, card_id)

    def update_card(self, card_id: str, update: CardUpdate) -> Card:
        return self.execute(UpdateCard(card_id, update))

    def move_card(self, card_id: str, column_id: str, position: Optional[int] = None) -> Card:
        return self.execute(MoveCard(card_id, column_id, position))

    def archive_card(self, card_id: str) -> ArchivedCard:
        return self.execute(ArchiveCard(card_id))

    def restore_card(self, card_id: str, column_id: Optional[str] = None,
                     position: Optional[int] = None) -> Card:
        return self.execute(RestoreCard(card_id, column_id, position))

    def delete_card(self, card_id: str) -> Card:
        return self.execute(DeleteCard(card_id))

    def list_archived_cards(self, board_id: Optional[str] = None) -> List[ArchivedCard]:
        archived = list(self.snapshot.archived_cards)
        if board_id is not None:
            column_ids = {c.id for c in self.snapshot.columns if c.board_id == board_id}
            archived = [a for a in archived if a.original_column_id in column_ids]
        return sorted(archived, key=lambda a: a.archived_at, reverse=True)

    def assign_card_to_sprint(self, card_id: str, sprint_id: str) -> Card:
        return self.execute(AssignCardToSprint(card_id, sprint_id))

    def unassign_card_from_sprint(self, card_id: str) -> Card:
        return self.execute(UnassignCardFromSprint(card_id))

    def bulk_archive_cards(self, card_ids: List[str]) -> BulkResult:
        return self._bulk(card_ids, ArchiveCard)

    def bulk_move_cards(self, card_ids: List[str], column_id: str) -> BulkResult:
        return self._bulk(card_ids, lambda card_id: MoveCard(card_id, column_id))

    def bulk_assign_sprint(self, card_ids: List[str], sprint_id: str) -> BulkResult:
        return self._bulk(card_ids, lambda card_id: AssignCardToSprint(card_id, sprint_id))

    # ── Sprints ──

    def create_sprint(self, board_id: str, prefix: Optional[str] = None,
                      name: Optional[str] = None, card_prefix: Optional[str] = None) -> Sprint:
        return self.execute(CreateSprint(board_id, prefix, name, card_prefix,
                                         default_prefix=self.default_sprint_prefix))

    def list_sprints(self, board_id: str) -> List[Sprint]:
        self._context().board(board_id)
        return sorted((s for s in self.snapshot.sprints if s.board_id == board_id),
                      key=lambda s: (s.sprint_number, s.created_at))

    def get_sprint(self, sprint_id: str) -> Optional[Sprint]:
        return self._find(self.snapshot.sprints, sprint_id)

    def update_sprint(self, sprint_id: str, update: SprintUpdate) -> Sprint:
        return self.execute(UpdateSprint(sprint_id, update))

    def activate_sprint(self, sprint_id: str, duration_days: Optional[int] = None) -> Sprint:
        if duration_days is None:
            sprint = self._context().sprint(sprint_id)
            board = self._context().board(sprint.board_id)
            duration_days = board.sprint_duration_days or self.default_sprint_duration_days
        return self.execute(ActivateSprint(sprint_id, duration_days))

    def complete_sprint(self, sprint_id: str) -> Sprint:
        return self.execute(CompleteSprint(sprint_id))

    def cancel_sprint(self, sprint_id: str) -> Sprint:
        return self.execute(CancelSprint(sprint_id))

    def delete_sprint(self, sprint_id: str) -> Sprint:
        return self.execute(DeleteSprint(sprint_id))

    # ── Dependencies ──

    def add_card_dependency(self, source_id: str, target_id: str,
                            edge_type: CardEdgeType = CardEdgeType.BLOCKS) -> Edge:
        return self.execute(AddCardEdge(source_id, target_id, edge_type))

    def remove_card_dependency(self, source_id: str, target_id: str,
                               edge_type: CardEdgeType = CardEdgeType.BLOCKS) -> Edge:
        return self.execute(RemoveCardEdge(source_id, target_id, edge_type))

    def card_dependencies(self, card_id: str) -> Dict[str, List[str]]:
        """Blocking relationships of one card, by direction."""
        if self.get_card(card_id) is None:
            raise NotFoundError(f"Card {card_id}")
        graph = self.snapshot.graph
        return {
            "blocked_by": graph.blockers_of(card_id),
            "blocks": graph.blocked_by(card_id),
            "relates_to": graph.related_to(card_id),
        }

    # ── Import / export ──

    def export_board(self, board_id: Optional[str] = None) -> str:
        """JSON export of one board, or of every board when board_id is None."""
        if board_id is None:
            return export_all(self.snapshot).to_json()
        board = self._context().board(board_id)
        return AllBoardsExport([export_board(self.snapshot, board)]).to_json()

    def import_board(self, text: str) -> Board:
        """Import an export document; returns the first imported board."""
        boards = self.import_boards(text)
        return boards[0]

    def import_boards(self, text: str) -> List[Board]:
        boards = self.execute(ImportBoards(parse_import(text)))
        logger.info(f"Imported {len(boards)} board(s)")
        return boards
