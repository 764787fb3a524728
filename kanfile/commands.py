"""
Command layer: the only way the rest of the package mutates state.

Every command exposes execute(context) and description(). A command checks
all of its preconditions before touching anything, so a command that
raises leaves the context exactly as it found it. Commands never do I/O.

Commands that create or change an entity leave it in `result`.
"""
from typing import Any, Iterable, List, Optional

from .errors import NotFoundError, ValidationError
from .graph import CardEdgeType, Edge
from .schema import (
    DEFAULT_CARD_PREFIX,
    DEFAULT_SPRINT_PREFIX,
    ArchivedCard,
    Board,
    BoardUpdate,
    Card,
    CardUpdate,
    Column,
    ColumnUpdate,
    SortField,
    SortOrder,
    Sprint,
    SprintStatus,
    SprintUpdate,
    TaskListView,
    utc_now,
)
from .snapshot import Snapshot


class CommandContext:
    """Mutable view over one Snapshot, with id lookups used by commands."""

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot

    @property
    def boards(self) -> List[Board]:
        return self.snapshot.boards

    @property
    def columns(self) -> List[Column]:
        return self.snapshot.columns

    @property
    def cards(self) -> List[Card]:
        return self.snapshot.cards

    @property
    def archived_cards(self) -> List[ArchivedCard]:
        return self.snapshot.archived_cards

    @property
    def sprints(self) -> List[Sprint]:
        return self.snapshot.sprints

    @property
    def graph(self):
        return self.snapshot.graph

    # ── Lookups (raise NotFoundError) ──

    def board(self, board_id: str) -> Board:
        for board in self.boards:
            if board.id == board_id:
                return board
        raise NotFoundError(f"Board {board_id}")

    def column(self, column_id: str) -> Column:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise NotFoundError(f"Column {column_id}")

    def card(self, card_id: str) -> Card:
        for card in self.cards:
            if card.id == card_id:
                return card
        raise NotFoundError(f"Card {card_id}")

    def archived_card(self, card_id: str) -> ArchivedCard:
        for archived in self.archived_cards:
            if archived.card.id == card_id:
                return archived
        raise NotFoundError(f"Archived card {card_id}")

    def sprint(self, sprint_id: str) -> Sprint:
        for sprint in self.sprints:
            if sprint.id == sprint_id:
                return sprint
        raise NotFoundError(f"Sprint {sprint_id}")

    def board_of_card(self, card: Card) -> Board:
        return self.board(self.column(card.column_id).board_id)

    def board_columns(self, board_id: str) -> List[Column]:
        return sorted(
            (c for c in self.columns if c.board_id == board_id),
            key=lambda c: (c.position, c.created_at),
        )

    def column_cards(self, column_id: str, exclude: Optional[str] = None) -> List[Card]:
        return sorted(
            (c for c in self.cards if c.column_id == column_id and c.id != exclude),
            key=lambda c: (c.position, c.created_at),
        )

    def board_card_pool(self, board_id: str) -> List[Card]:
        """Live and archived cards that belong to a board."""
        column_ids = {c.id for c in self.columns if c.board_id == board_id}
        pool = [c for c in self.cards if c.column_id in column_ids]
        pool.extend(a.card for a in self.archived_cards if a.original_column_id in column_ids)
        return pool


def _require_text(value: Optional[str], what: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{what} cannot be empty")
    return value.strip()


def _renumber(items: Iterable[Any]) -> None:
    for index, item in enumerate(items):
        if item.position != index:
            item.position = index


def _place(items: List[Any], item: Any, position: Optional[int]) -> None:
    """Insert item into an ordered list at position (clamped) and renumber."""
    index = len(items) if position is None else max(0, min(position, len(items)))
    items.insert(index, item)
    _renumber(items)


class Command:
    """Base class. Subclasses implement execute() and description()."""

    result: Any = None

    def execute(self, context: CommandContext) -> None:
        raise NotImplementedError

    def description(self) -> str:
        return self.__class__.__name__

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.description()}>"


class BatchCommand(Command):
    """Run several commands as one: either all apply or none do."""

    def __init__(self, commands: List[Command], label: str = ""):
        self.commands = list(commands)
        self.label = label

    def execute(self, context: CommandContext) -> None:
        working = CommandContext(context.snapshot.clone())
        for command in self.commands:
            command.execute(working)
        target = context.snapshot
        target.boards[:] = working.boards
        target.columns[:] = working.columns
        target.cards[:] = working.cards
        target.archived_cards[:] = working.archived_cards
        target.sprints[:] = working.sprints
        target.graph.cards.edges[:] = working.graph.cards.edges
        self.result = [c.result for c in self.commands]

    def description(self) -> str:
        return self.label or f"Batch of {len(self.commands)} commands"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Board commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CreateBoard(Command):
    def __init__(self, name: str, card_prefix: Optional[str] = None,
                 description: Optional[str] = None, sprint_prefix: Optional[str] = None):
        self.name = name
        self.card_prefix = card_prefix
        self.board_description = description
        self.sprint_prefix = sprint_prefix

    def execute(self, context: CommandContext) -> None:
        name = _require_text(self.name, "Board name")
        if self.card_prefix is not None:
            _require_text(self.card_prefix, "Card prefix")
        board = Board(
            name=name,
            description=self.board_description,
            card_prefix=self.card_prefix,
            sprint_prefix=self.sprint_prefix,
        )
        context.boards.append(board)
        self.result = board

    def description(self) -> str:
        return f"Create board: '{self.name}'"


class UpdateBoard(Command):
    def __init__(self, board_id: str, update: BoardUpdate):
        self.board_id = board_id
        self.update = update

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        if self.update.name is not None:
            _require_text(self.update.name, "Board name")
        if self.update.active_sprint_id.is_set:
            sprint = context.sprint(self.update.active_sprint_id.value)
            if sprint.board_id != board.id:
                raise ValidationError(f"Sprint {sprint.id} does not belong to board {board.id}")
        if self.update.sprint_duration_days.is_set and self.update.sprint_duration_days.value <= 0:
            raise ValidationError("Sprint duration must be positive")
        board.apply(self.update)
        self.result = board

    def description(self) -> str:
        return f"Update board {self.board_id}"


class DeleteBoard(Command):
    """Delete a board and everything it owns."""

    def __init__(self, board_id: str):
        self.board_id = board_id

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        column_ids = {c.id for c in context.columns if c.board_id == board.id}
        doomed_cards = {c.id for c in context.cards if c.column_id in column_ids}
        doomed_cards.update(
            a.card.id for a in context.archived_cards
            if a.original_column_id in column_ids or a.card.column_id in column_ids
        )

        context.cards[:] = [c for c in context.cards if c.id not in doomed_cards]
        context.archived_cards[:] = [a for a in context.archived_cards if a.card.id not in doomed_cards]
        context.columns[:] = [c for c in context.columns if c.board_id != board.id]
        context.sprints[:] = [s for s in context.sprints if s.board_id != board.id]
        for card_id in doomed_cards:
            context.graph.cards.remove_node(card_id)
        context.boards.remove(board)
        self.result = board

    def description(self) -> str:
        return f"Delete board {self.board_id}"


class SetBoardTaskSort(Command):
    def __init__(self, board_id: str, sort_field: SortField, order: SortOrder):
        self.board_id = board_id
        self.sort_field = sort_field
        self.order = order

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        board.set_task_sort(self.sort_field, self.order)
        self.result = board

    def description(self) -> str:
        return f"Sort board tasks by {self.sort_field.value} ({self.order.value})"


class SetBoardTaskListView(Command):
    def __init__(self, board_id: str, view: TaskListView):
        self.board_id = board_id
        self.view = view

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        board.set_task_list_view(self.view)
        self.result = board

    def description(self) -> str:
        return f"Set task list view to {self.view.value}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Column commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _check_wip_limit(value: Optional[int]) -> None:
    if value is not None and value <= 0:
        raise ValidationError(f"WIP limit must be positive, got {value}")


class CreateColumn(Command):
    def __init__(self, board_id: str, name: str, position: Optional[int] = None,
                 wip_limit: Optional[int] = None):
        self.board_id = board_id
        self.name = name
        self.position = position
        self.wip_limit = wip_limit

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        name = _require_text(self.name, "Column name")
        _check_wip_limit(self.wip_limit)
        siblings = context.board_columns(board.id)
        column = Column(board_id=board.id, name=name, wip_limit=self.wip_limit)
        _place(siblings, column, self.position)
        context.columns.append(column)
        self.result = column

    def description(self) -> str:
        return f"Create column: '{self.name}'"


class UpdateColumn(Command):
    def __init__(self, column_id: str, update: ColumnUpdate):
        self.column_id = column_id
        self.update = update

    def execute(self, context: CommandContext) -> None:
        column = context.column(self.column_id)
        if self.update.name is not None:
            _require_text(self.update.name, "Column name")
        if self.update.wip_limit.is_set:
            _check_wip_limit(self.update.wip_limit.value)
        position = self.update.position
        column.apply(ColumnUpdate(name=self.update.name, wip_limit=self.update.wip_limit))
        if position is not None:
            siblings = context.board_columns(column.board_id)
            siblings.remove(column)
            _place(siblings, column, position)
            column.updated_at = utc_now()
        self.result = column

    def description(self) -> str:
        return f"Update column {self.column_id}"


class DeleteColumn(Command):
    """Delete an empty column. Columns still referenced by cards are kept."""

    def __init__(self, column_id: str):
        self.column_id = column_id

    def execute(self, context: CommandContext) -> None:
        column = context.column(self.column_id)
        live = sum(1 for c in context.cards if c.column_id == column.id)
        archived = sum(
            1 for a in context.archived_cards
            if a.original_column_id == column.id or a.card.column_id == column.id
        )
        if live or archived:
            raise ValidationError(
                f"Column '{column.name}' still holds {live} card(s) and {archived} archived card(s)"
            )
        context.columns.remove(column)
        _renumber(context.board_columns(column.board_id))
        self.result = column

    def description(self) -> str:
        return f"Delete column {self.column_id}"


class ReorderColumn(Command):
    def __init__(self, column_id: str, new_position: int):
        self.column_id = column_id
        self.new_position = new_position

    def execute(self, context: CommandContext) -> None:
        column = context.column(self.column_id)
        siblings = context.board_columns(column.board_id)
        siblings.remove(column)
        _place(siblings, column, self.new_position)
        column.updated_at = utc_now()
        self.result = column

    def description(self) -> str:
        return f"Move column {self.column_id} to position {self.new_position}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Card commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CreateCard(Command):
    """Create a card at the end of a column (or at position) and number it."""

    def __init__(self, board_id: str, column_id: str, title: str,
                 position: Optional[int] = None, prefix: Optional[str] = None,
                 default_prefix: str = DEFAULT_CARD_PREFIX):
        self.board_id = board_id
        self.column_id = column_id
        self.title = title
        self.position = position
        self.prefix = prefix
        self.default_prefix = default_prefix

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        column = context.column(self.column_id)
        if column.board_id != board.id:
            raise ValidationError(f"Column {column.id} does not belong to board {board.id}")
        title = _require_text(self.title, "Card title")
        prefix = self.prefix or board.effective_card_prefix(self.default_prefix)

        board.ensure_card_counter_initialized(prefix, context.board_card_pool(board.id))
        card = Card.create(board, column.id, title, 0, prefix)
        _place(context.column_cards(column.id), card, self.position)
        context.cards.append(card)
        self.result = card

    def description(self) -> str:
        return f"Create card: '{self.title}'"


class UpdateCard(Command):
    def __init__(self, card_id: str, update: CardUpdate):
        self.card_id = card_id
        self.update = update

    def execute(self, context: CommandContext) -> None:
        card = context.card(self.card_id)
        if self.update.title is not None:
            _require_text(self.update.title, "Card title")
        if self.update.points.is_set and self.update.points.value < 0:
            raise ValidationError("Points cannot be negative")
        position = self.update.position
        card.apply(CardUpdate(
            title=self.update.title,
            description=self.update.description,
            priority=self.update.priority,
            status=self.update.status,
            points=self.update.points,
            due_date=self.update.due_date,
        ))
        if position is not None:
            siblings = context.column_cards(card.column_id, exclude=card.id)
            _place(siblings, card, position)
            card.touch()
        self.result = card

    def description(self) -> str:
        return f"Update card {self.card_id}"


class MoveCard(Command):
    """Move a card to another column (same board) and/or position."""

    def __init__(self, card_id: str, column_id: str, position: Optional[int] = None):
        self.card_id = card_id
        self.column_id = column_id
        self.position = position

    def execute(self, context: CommandContext) -> None:
        card = context.card(self.card_id)
        target = context.column(self.column_id)
        source = context.column(card.column_id)
        if source.board_id != target.board_id:
            raise ValidationError(
                f"Cannot move card {card.id} to column {target.id} on a different board"
            )
        siblings = context.column_cards(target.id, exclude=card.id)
        card.move_to_column(target.id, card.position)
        _place(siblings, card, self.position)
        if source.id != target.id:
            _renumber(context.column_cards(source.id))
        self.result = card

    def description(self) -> str:
        return f"Move card {self.card_id} to column {self.column_id}"


class ArchiveCard(Command):
    def __init__(self, card_id: str):
        self.card_id = card_id

    def execute(self, context: CommandContext) -> None:
        card = context.card(self.card_id)
        archived = ArchivedCard.from_card(card)
        context.cards.remove(card)
        context.archived_cards.append(archived)
        _renumber(context.column_cards(card.column_id))
        context.graph.cards.archive_node(card.id)
        self.result = archived

    def description(self) -> str:
        return f"Archive card {self.card_id}"


class RestoreCard(Command):
    """
    Bring an archived card back.

    Target column: the one given, else the original column. Position: the
    one given, else the original position (clamped to the column).
    """

    def __init__(self, card_id: str, column_id: Optional[str] = None, position: Optional[int] = None):
        self.card_id = card_id
        self.column_id = column_id
        self.position = position

    def execute(self, context: CommandContext) -> None:
        archived = context.archived_card(self.card_id)
        if self.column_id is not None:
            column = context.column(self.column_id)
            home = next((c for c in context.columns if c.id == archived.original_column_id), None)
            if home is not None and home.board_id != column.board_id:
                raise ValidationError(
                    f"Cannot restore card {self.card_id} into column {column.id} on a different board"
                )
        else:
            try:
                column = context.column(archived.original_column_id)
            except NotFoundError:
                raise NotFoundError(
                    f"Original column {archived.original_column_id} no longer exists; "
                    f"give a column to restore card {self.card_id} into"
                ) from None
        position = self.position if self.position is not None else archived.original_position

        context.archived_cards.remove(archived)
        card = archived.card
        card.move_to_column(column.id, card.position)
        _place(context.column_cards(column.id), card, position)
        context.cards.append(card)
        context.graph.cards.unarchive_node(card.id)
        self.result = card

    def description(self) -> str:
        return f"Restore card {self.card_id}"


class DeleteCard(Command):
    """Delete a live or archived card and every edge that touches it."""

    def __init__(self, card_id: str):
        self.card_id = card_id

    def execute(self, context: CommandContext) -> None:
        live = [c for c in context.cards if c.id == self.card_id]
        archived = [a for a in context.archived_cards if a.card.id == self.card_id]
        if not live and not archived:
            raise NotFoundError(f"Card {self.card_id}")
        if live:
            card = live[0]
            context.cards.remove(card)
            _renumber(context.column_cards(card.column_id))
        else:
            card = archived[0].card
            context.archived_cards.remove(archived[0])
        context.graph.cards.remove_node(self.card_id)
        self.result = card

    def description(self) -> str:
        return f"Delete card {self.card_id}"


class AssignCardToSprint(Command):
    def __init__(self, card_id: str, sprint_id: str):
        self.card_id = card_id
        self.sprint_id = sprint_id

    def execute(self, context: CommandContext) -> None:
        card = context.card(self.card_id)
        sprint = context.sprint(self.sprint_id)
        board = context.board_of_card(card)
        if sprint.board_id != board.id:
            raise ValidationError(f"Sprint {sprint.id} belongs to another board")
        if sprint.status in (SprintStatus.COMPLETED, SprintStatus.CANCELLED):
            raise ValidationError(f"Cannot assign cards to a {sprint.status.value.lower()} sprint")
        if card.sprint_id and card.sprint_id != sprint.id:
            card.end_current_sprint_log()
        card.assign_to_sprint(sprint.id, sprint.sprint_number, sprint.name(board), sprint.status.value)
        self.result = card

    def description(self) -> str:
        return f"Assign card {self.card_id} to sprint {self.sprint_id}"


class UnassignCardFromSprint(Command):
    def __init__(self, card_id: str):
        self.card_id = card_id

    def execute(self, context: CommandContext) -> None:
        card = context.card(self.card_id)
        if card.sprint_id is not None:
            card.end_current_sprint_log()
            card.sprint_id = None
            card.touch()
        self.result = card

    def description(self) -> str:
        return f"Unassign card {self.card_id} from sprint"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sprint commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _sprint_cards(context: CommandContext, sprint_id: str) -> List[Card]:
    cards = [c for c in context.cards if c.sprint_id == sprint_id]
    cards.extend(a.card for a in context.archived_cards if a.card.sprint_id == sprint_id)
    return cards


def _close_sprint_logs(context: CommandContext, sprint: Sprint) -> None:
    for card in _sprint_cards(context, sprint.id):
        if card.sprint_logs and card.sprint_logs[-1].sprint_id == sprint.id:
            card.sprint_logs[-1].status = sprint.status.value
            card.end_current_sprint_log()


class CreateSprint(Command):
    def __init__(self, board_id: str, prefix: Optional[str] = None, name: Optional[str] = None,
                 card_prefix: Optional[str] = None, default_prefix: str = DEFAULT_SPRINT_PREFIX):
        self.board_id = board_id
        self.prefix = prefix
        self.name = name
        self.card_prefix = card_prefix
        self.default_prefix = default_prefix

    def execute(self, context: CommandContext) -> None:
        board = context.board(self.board_id)
        if self.name is not None:
            _require_text(self.name, "Sprint name")
        prefix = self.prefix or board.effective_sprint_prefix(self.default_prefix)

        board.ensure_sprint_counter_initialized(prefix, context.sprints)
        number = board.next_sprint_number_for(prefix)
        board.next_sprint_number = max(board.next_sprint_number, number + 1)
        if self.name is not None:
            name_index = board.add_sprint_name_at_used_index(self.name.strip())
        else:
            name_index = board.consume_sprint_name()

        sprint = Sprint(
            board_id=board.id,
            sprint_number=number,
            name_index=name_index,
            prefix=prefix,
            card_prefix=self.card_prefix,
        )
        context.sprints.append(sprint)
        self.result = sprint

    def description(self) -> str:
        return f"Create sprint on board {self.board_id}"


class UpdateSprint(Command):
    def __init__(self, sprint_id: str, update: SprintUpdate):
        self.sprint_id = sprint_id
        self.update = update

    def execute(self, context: CommandContext) -> None:
        sprint = context.sprint(self.sprint_id)
        board = context.board(sprint.board_id)
        update = self.update
        if update.name.is_set:
            _require_text(update.name.value, "Sprint name")
        start = update.start_date.apply(sprint.start_date)
        end = update.end_date.apply(sprint.end_date)
        if start and end and end < start:
            raise ValidationError("Sprint end date is before its start date")
        if update.is_empty():
            self.result = sprint
            return

        if update.name.is_set:
            sprint.name_index = board.add_sprint_name_at_used_index(update.name.value.strip())
        elif update.name.is_clear:
            sprint.name_index = None
        sprint.prefix = update.prefix.apply(sprint.prefix)
        sprint.card_prefix = update.card_prefix.apply(sprint.card_prefix)
        sprint.start_date = start
        sprint.end_date = end
        sprint.updated_at = utc_now()
        self.result = sprint

    def description(self) -> str:
        return f"Update sprint {self.sprint_id}"


class ActivateSprint(Command):
    def __init__(self, sprint_id: str, duration_days: int):
        self.sprint_id = sprint_id
        self.duration_days = duration_days

    def execute(self, context: CommandContext) -> None:
        sprint = context.sprint(self.sprint_id)
        board = context.board(sprint.board_id)
        sprint.check_transition("activate")
        if self.duration_days is None or self.duration_days <= 0:
            raise ValidationError(f"Sprint duration must be positive, got {self.duration_days}")
        if board.active_sprint_id and board.active_sprint_id != sprint.id:
            current = [s for s in context.sprints if s.id == board.active_sprint_id]
            if current and current[0].status == SprintStatus.ACTIVE:
                raise ValidationError(f"Board already has an active sprint ({current[0].id})")

        sprint.activate(self.duration_days)
        board.active_sprint_id = sprint.id
        board.touch()
        for card in _sprint_cards(context, sprint.id):
            if card.sprint_logs and card.sprint_logs[-1].sprint_id == sprint.id:
                card.sprint_logs[-1].status = sprint.status.value
        self.result = sprint

    def description(self) -> str:
        return f"Activate sprint {self.sprint_id} for {self.duration_days} days"


class CompleteSprint(Command):
    def __init__(self, sprint_id: str):
        self.sprint_id = sprint_id

    def execute(self, context: CommandContext) -> None:
        sprint = context.sprint(self.sprint_id)
        board = context.board(sprint.board_id)
        sprint.check_transition("complete")
        sprint.complete()
        if board.active_sprint_id == sprint.id:
            board.active_sprint_id = None
            board.touch()
        _close_sprint_logs(context, sprint)
        self.result = sprint

    def description(self) -> str:
        return f"Complete sprint {self.sprint_id}"


class CancelSprint(Command):
    def __init__(self, sprint_id: str):
        self.sprint_id = sprint_id

    def execute(self, context: CommandContext) -> None:
        sprint = context.sprint(self.sprint_id)
        board = context.board(sprint.board_id)
        sprint.check_transition("cancel")
        sprint.cancel()
        if board.active_sprint_id == sprint.id:
            board.active_sprint_id = None
            board.touch()
        _close_sprint_logs(context, sprint)
        self.result = sprint

    def description(self) -> str:
        return f"Cancel sprint {self.sprint_id}"


class DeleteSprint(Command):
    """Delete a sprint; its cards (live and archived) become unassigned."""

    def __init__(self, sprint_id: str):
        self.sprint_id = sprint_id

    def execute(self, context: CommandContext) -> None:
        sprint = context.sprint(self.sprint_id)
        board = context.board(sprint.board_id)
        for card in _sprint_cards(context, sprint.id):
            card.end_current_sprint_log()
            card.sprint_id = None
            card.touch()
        if board.active_sprint_id == sprint.id:
            board.active_sprint_id = None
            board.touch()
        context.sprints.remove(sprint)
        self.result = sprint

    def description(self) -> str:
        return f"Delete sprint {self.sprint_id}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dependency commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AddCardEdge(Command):
    def __init__(self, source_id: str, target_id: str, edge_type: CardEdgeType,
                 weight: Optional[float] = None):
        self.source_id = source_id
        self.target_id = target_id
        self.edge_type = edge_type
        self.weight = weight

    def execute(self, context: CommandContext) -> None:
        context.card(self.source_id)
        context.card(self.target_id)
        edge = Edge.for_type(self.source_id, self.target_id, self.edge_type, self.weight)
        context.graph.cards.add_edge(edge)
        self.result = context.graph.cards.find_edge(self.source_id, self.target_id, self.edge_type)

    def description(self) -> str:
        return f"{self.source_id} {self.edge_type.value} {self.target_id}"


class _EdgeCommand(Command):
    def __init__(self, source_id: str, target_id: str, edge_type: CardEdgeType):
        self.source_id = source_id
        self.target_id = target_id
        self.edge_type = edge_type

    def _edge(self, context: CommandContext) -> Edge:
        edge = context.graph.cards.find_edge(self.source_id, self.target_id, self.edge_type)
        if edge is None:
            raise NotFoundError(f"{self.edge_type.value} edge {self.source_id} -> {self.target_id}")
        return edge


class RemoveCardEdge(_EdgeCommand):
    def execute(self, context: CommandContext) -> None:
        self.result = self._edge(context)
        context.graph.cards.remove_edge(self.source_id, self.target_id, self.edge_type)

    def description(self) -> str:
        return f"Remove {self.edge_type.value} edge {self.source_id} -> {self.target_id}"


class ArchiveCardEdge(_EdgeCommand):
    def execute(self, context: CommandContext) -> None:
        edge = self._edge(context)
        edge.archive()
        self.result = edge

    def description(self) -> str:
        return f"Archive {self.edge_type.value} edge {self.source_id} -> {self.target_id}"


class UnarchiveCardEdge(_EdgeCommand):
    def execute(self, context: CommandContext) -> None:
        self._edge(context)
        context.graph.cards.unarchive_edge(self.source_id, self.target_id, self.edge_type)
        self.result = self._edge(context)

    def description(self) -> str:
        return f"Unarchive {self.edge_type.value} edge {self.source_id} -> {self.target_id}"


