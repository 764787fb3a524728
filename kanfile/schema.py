"""
Kanban record schema.

Records:
  Board → Column → Card, with Sprint owned by Board and ArchivedCard
  wrapping a Card that left its column.

All records are owned by the Snapshot; cross references (card → column,
card → sprint) are ids only. Partial edits go through the *Update values,
whose optional fields use the three-state FieldUpdate.
"""
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import ValidationError

DEFAULT_SPRINT_PREFIX = "sprint"
DEFAULT_CARD_PREFIX = "task"
DEFAULT_SPRINT_DURATION_DAYS = 14


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Utilities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        # Some writers emit nanoseconds; datetime keeps microseconds.
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp {value!r}: {e}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class _NamedEnum(Enum):
    """Enum whose JSON value is the variant name, parsed leniently."""

    @classmethod
    def from_str(cls, value: Any, default=None):
        if isinstance(value, cls):
            return value
        key = str(value).replace("_", "").replace("-", "").replace(" ", "").lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        if default is not None:
            return default
        choices = ", ".join(m.value for m in cls)
        raise ValidationError(f"Invalid {cls.__name__} {value!r} (expected one of: {choices})")


class CardPriority(_NamedEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return list(CardPriority).index(self)


class CardStatus(_NamedEnum):
    TODO = "Todo"
    IN_PROGRESS = "InProgress"
    BLOCKED = "Blocked"
    DONE = "Done"

    @property
    def rank(self) -> int:
        return list(CardStatus).index(self)


class SprintStatus(_NamedEnum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class SortField(_NamedEnum):
    POINTS = "Points"
    PRIORITY = "Priority"
    CREATED_AT = "CreatedAt"
    UPDATED_AT = "UpdatedAt"
    STATUS = "Status"
    POSITION = "Position"
    DEFAULT = "Default"


class SortOrder(_NamedEnum):
    ASCENDING = "Ascending"
    DESCENDING = "Descending"


class TaskListView(_NamedEnum):
    FLAT = "Flat"
    GROUPED_BY_COLUMN = "GroupedByColumn"
    COLUMN_VIEW = "ColumnView"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# FieldUpdate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FieldUpdate:
    """
    Three-state update for an optional field.

    NO_CHANGE leaves the field alone, set(v) assigns v, CLEAR assigns None.
    A bare Optional cannot tell "not given" apart from "clear it".
    """

    __slots__ = ("state", "value")

    NO_CHANGE_STATE = "no_change"
    SET_STATE = "set"
    CLEAR_STATE = "clear"

    def __init__(self, state: str, value: Any = None):
        self.state = state
        self.value = value

    @classmethod
    def set(cls, value: Any) -> "FieldUpdate":
        if value is None:
            raise ValueError("FieldUpdate.set() needs a value; use CLEAR instead")
        return cls(cls.SET_STATE, value)

    @classmethod
    def from_optional(cls, value: Any) -> "FieldUpdate":
        """None means clear, anything else means set."""
        return CLEAR if value is None else cls.set(value)

    @classmethod
    def from_payload(cls, data: Dict[str, Any], key: str,
                     convert: Optional[Callable[[Any], Any]] = None) -> "FieldUpdate":
        """Missing key → NO_CHANGE, null → CLEAR, value → set(value)."""
        if key not in data:
            return NO_CHANGE
        raw = data[key]
        if raw is None:
            return CLEAR
        return cls.set(convert(raw) if convert else raw)

    @property
    def is_no_change(self) -> bool:
        return self.state == self.NO_CHANGE_STATE

    @property
    def is_set(self) -> bool:
        return self.state == self.SET_STATE

    @property
    def is_clear(self) -> bool:
        return self.state == self.CLEAR_STATE

    def apply(self, current: Any) -> Any:
        if self.is_set:
            return self.value
        if self.is_clear:
            return None
        return current

    def __eq__(self, other) -> bool:
        return isinstance(other, FieldUpdate) and (self.state, self.value) == (other.state, other.value)

    def __hash__(self):
        return hash((self.state, self.value))

    def __repr__(self) -> str:
        if self.is_set:
            return f"FieldUpdate.set({self.value!r})"
        return "FieldUpdate.CLEAR" if self.is_clear else "FieldUpdate.NO_CHANGE"


NO_CHANGE = FieldUpdate(FieldUpdate.NO_CHANGE_STATE)
CLEAR = FieldUpdate(FieldUpdate.CLEAR_STATE)


def _no_change() -> FieldUpdate:
    return NO_CHANGE


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class BoardUpdate:
    name: Optional[str] = None
    description: FieldUpdate = field(default_factory=_no_change)
    sprint_prefix: FieldUpdate = field(default_factory=_no_change)
    card_prefix: FieldUpdate = field(default_factory=_no_change)
    task_sort_field: Optional[SortField] = None
    task_sort_order: Optional[SortOrder] = None
    sprint_duration_days: FieldUpdate = field(default_factory=_no_change)
    task_list_view: Optional[TaskListView] = None
    active_sprint_id: FieldUpdate = field(default_factory=_no_change)

    def is_empty(self) -> bool:
        return (
            self.name is None
            and self.task_sort_field is None
            and self.task_sort_order is None
            and self.task_list_view is None
            and all(u.is_no_change for u in (
                self.description, self.sprint_prefix, self.card_prefix,
                self.sprint_duration_days, self.active_sprint_id,
            ))
        )

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "BoardUpdate":
        return cls(
            name=data.get("name"),
            description=FieldUpdate.from_payload(data, "description"),
            sprint_prefix=FieldUpdate.from_payload(data, "sprint_prefix"),
            card_prefix=FieldUpdate.from_payload(data, "card_prefix"),
            task_sort_field=SortField.from_str(data["task_sort_field"]) if data.get("task_sort_field") else None,
            task_sort_order=SortOrder.from_str(data["task_sort_order"]) if data.get("task_sort_order") else None,
            sprint_duration_days=FieldUpdate.from_payload(data, "sprint_duration_days", int),
            task_list_view=TaskListView.from_str(data["task_list_view"]) if data.get("task_list_view") else None,
            active_sprint_id=FieldUpdate.from_payload(data, "active_sprint_id", str),
        )


@dataclass
class Board:
    """Top-level container; owns columns and sprints and the numbering counters."""

    name: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    sprint_prefix: Optional[str] = None
    card_prefix: Optional[str] = None
    task_sort_field: SortField = SortField.DEFAULT
    task_sort_order: SortOrder = SortOrder.ASCENDING
    sprint_duration_days: Optional[int] = None
    sprint_names: List[str] = field(default_factory=list)
    sprint_name_used_count: int = 0
    next_sprint_number: int = 1
    active_sprint_id: Optional[str] = None
    task_list_view: TaskListView = TaskListView.FLAT
    prefix_counters: Dict[str, int] = field(default_factory=dict)
    sprint_counters: Dict[str, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def effective_sprint_prefix(self, default: str = DEFAULT_SPRINT_PREFIX) -> str:
        return self.sprint_prefix or default

    def effective_card_prefix(self, default: str = DEFAULT_CARD_PREFIX) -> str:
        return self.card_prefix or default

    # ── Counters ──

    def next_card_number(self, prefix: str) -> int:
        number = self.prefix_counters.get(prefix, 1)
        self.prefix_counters[prefix] = number + 1
        self.touch()
        return number

    def next_sprint_number_for(self, prefix: str) -> int:
        number = self.sprint_counters.get(prefix, 1)
        self.sprint_counters[prefix] = number + 1
        self.touch()
        return number

    def ensure_card_counter_initialized(self, prefix: str, board_cards: Iterable["Card"]) -> None:
        """Seed the counter for prefix from the highest existing card number."""
        if prefix in self.prefix_counters:
            return
        own_default = self.effective_card_prefix()
        highest = max(
            (c.card_number for c in board_cards if (c.assigned_prefix or own_default) == prefix),
            default=0,
        )
        self.prefix_counters[prefix] = highest + 1

    def ensure_sprint_counter_initialized(self, prefix: str, sprints: Iterable["Sprint"]) -> None:
        if prefix in self.sprint_counters:
            return
        own_default = self.effective_sprint_prefix()
        highest = max(
            (s.sprint_number for s in sprints
             if s.board_id == self.id and (s.prefix or own_default) == prefix),
            default=0,
        )
        self.sprint_counters[prefix] = highest + 1

    # ── Sprint name pool ──

    def consume_sprint_name(self) -> Optional[int]:
        """Hand out the next unused pooled name, if any."""
        if self.sprint_name_used_count < len(self.sprint_names):
            index = self.sprint_name_used_count
            self.sprint_name_used_count += 1
            self.touch()
            return index
        return None

    def add_sprint_name_at_used_index(self, name: str) -> int:
        self.sprint_name_used_count = min(self.sprint_name_used_count, len(self.sprint_names))
        index = self.sprint_name_used_count
        self.sprint_names.insert(index, name)
        self.sprint_name_used_count += 1
        self.touch()
        return index

    # ── Updates ──

    def set_task_sort(self, sort_field: SortField, order: SortOrder) -> None:
        self.task_sort_field = sort_field
        self.task_sort_order = order
        self.touch()

    def set_task_list_view(self, view: TaskListView) -> None:
        self.task_list_view = view
        self.touch()

    def apply(self, update: BoardUpdate) -> None:
        if update.is_empty():
            return
        if update.name is not None:
            self.name = update.name
        self.description = update.description.apply(self.description)
        self.sprint_prefix = update.sprint_prefix.apply(self.sprint_prefix)
        self.card_prefix = update.card_prefix.apply(self.card_prefix)
        if update.task_sort_field is not None:
            self.task_sort_field = update.task_sort_field
        if update.task_sort_order is not None:
            self.task_sort_order = update.task_sort_order
        self.sprint_duration_days = update.sprint_duration_days.apply(self.sprint_duration_days)
        if update.task_list_view is not None:
            self.task_list_view = update.task_list_view
        self.active_sprint_id = update.active_sprint_id.apply(self.active_sprint_id)
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sprint_prefix": self.sprint_prefix,
            "card_prefix": self.card_prefix,
            "task_sort_field": self.task_sort_field.value,
            "task_sort_order": self.task_sort_order.value,
            "sprint_duration_days": self.sprint_duration_days,
            "sprint_names": list(self.sprint_names),
            "sprint_name_used_count": self.sprint_name_used_count,
            "next_sprint_number": self.next_sprint_number,
            "active_sprint_id": self.active_sprint_id,
            "task_list_view": self.task_list_view.value,
            "prefix_counters": dict(self.prefix_counters),
            "sprint_counters": dict(self.sprint_counters),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        # Older files call the sprint prefix "branch_prefix"
        sprint_prefix = data.get("sprint_prefix")
        if sprint_prefix is None:
            sprint_prefix = data.get("branch_prefix")

        board = cls(
            id=data.get("id") or new_id(),
            name=data.get("name", ""),
            description=data.get("description"),
            sprint_prefix=sprint_prefix,
            card_prefix=data.get("card_prefix"),
            task_sort_field=SortField.from_str(data.get("task_sort_field", "Default"), SortField.DEFAULT),
            task_sort_order=SortOrder.from_str(data.get("task_sort_order", "Ascending"), SortOrder.ASCENDING),
            sprint_duration_days=data.get("sprint_duration_days"),
            sprint_names=list(data.get("sprint_names") or []),
            sprint_name_used_count=int(data.get("sprint_name_used_count", 0)),
            next_sprint_number=int(data.get("next_sprint_number", 1)),
            active_sprint_id=data.get("active_sprint_id"),
            task_list_view=TaskListView.from_str(data.get("task_list_view", "Flat"), TaskListView.FLAT),
            prefix_counters={k: int(v) for k, v in (data.get("prefix_counters") or {}).items()},
            sprint_counters={k: int(v) for k, v in (data.get("sprint_counters") or {}).items()},
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )
        # Legacy single counter becomes the counter of the board's card prefix
        legacy_next = data.get("next_card_number")
        if legacy_next and not board.prefix_counters:
            board.prefix_counters[board.effective_card_prefix()] = int(legacy_next)
        return board


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Column
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class ColumnUpdate:
    name: Optional[str] = None
    position: Optional[int] = None
    wip_limit: FieldUpdate = field(default_factory=_no_change)

    def is_empty(self) -> bool:
        return self.name is None and self.position is None and self.wip_limit.is_no_change

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ColumnUpdate":
        return cls(
            name=data.get("name"),
            position=int(data["position"]) if data.get("position") is not None else None,
            wip_limit=FieldUpdate.from_payload(data, "wip_limit", int),
        )


@dataclass
class Column:
    board_id: str
    name: str
    position: int = 0
    id: str = field(default_factory=new_id)
    wip_limit: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def apply(self, update: ColumnUpdate) -> None:
        if update.is_empty():
            return
        if update.name is not None:
            self.name = update.name
        if update.position is not None:
            self.position = update.position
        self.wip_limit = update.wip_limit.apply(self.wip_limit)
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "position": self.position,
            "wip_limit": self.wip_limit,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=data.get("id") or new_id(),
            board_id=data.get("board_id", ""),
            name=data.get("name", ""),
            position=int(data.get("position", 0)),
            wip_limit=data.get("wip_limit"),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Card
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class SprintLog:
    """One stint of a card inside a sprint."""

    sprint_id: str
    sprint_number: int
    sprint_name: Optional[str] = None
    status: str = SprintStatus.PLANNING.value
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None

    def end(self) -> None:
        self.ended_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sprint_id": self.sprint_id,
            "sprint_number": self.sprint_number,
            "sprint_name": self.sprint_name,
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SprintLog":
        return cls(
            sprint_id=data.get("sprint_id", ""),
            sprint_number=int(data.get("sprint_number", 0)),
            sprint_name=data.get("sprint_name"),
            status=data.get("status", SprintStatus.PLANNING.value),
            started_at=parse_timestamp(data.get("started_at")) or utc_now(),
            ended_at=parse_timestamp(data.get("ended_at")),
        )


@dataclass
class CardUpdate:
    title: Optional[str] = None
    description: FieldUpdate = field(default_factory=_no_change)
    priority: Optional[CardPriority] = None
    status: Optional[CardStatus] = None
    position: Optional[int] = None
    points: FieldUpdate = field(default_factory=_no_change)
    due_date: FieldUpdate = field(default_factory=_no_change)

    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.priority is None
            and self.status is None
            and self.position is None
            and self.description.is_no_change
            and self.points.is_no_change
            and self.due_date.is_no_change
        )

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "CardUpdate":
        return cls(
            title=data.get("title"),
            description=FieldUpdate.from_payload(data, "description"),
            priority=CardPriority.from_str(data["priority"]) if data.get("priority") else None,
            status=CardStatus.from_str(data["status"]) if data.get("status") else None,
            position=int(data["position"]) if data.get("position") is not None else None,
            points=FieldUpdate.from_payload(data, "points", int),
            due_date=FieldUpdate.from_payload(data, "due_date", parse_timestamp),
        )


@dataclass
class Card:
    column_id: str
    title: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    priority: CardPriority = CardPriority.MEDIUM
    status: CardStatus = CardStatus.TODO
    position: int = 0
    points: Optional[int] = None
    due_date: Optional[datetime] = None
    sprint_id: Optional[str] = None
    card_number: int = 0
    assigned_prefix: Optional[str] = None
    sprint_logs: List[SprintLog] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, board: Board, column_id: str, title: str, position: int, prefix: str) -> "Card":
        """Create a card and allocate its number from the board counter."""
        number = board.next_card_number(prefix)
        return cls(
            column_id=column_id,
            title=title,
            position=position,
            card_number=number,
            assigned_prefix=prefix,
        )

    def touch(self) -> None:
        self.updated_at = utc_now()

    def display_id(self, board: Optional[Board] = None) -> str:
        prefix = self.assigned_prefix or (board.effective_card_prefix() if board else DEFAULT_CARD_PREFIX)
        return f"{prefix}-{self.card_number}"

    def move_to_column(self, column_id: str, position: int) -> None:
        self.column_id = column_id
        self.position = position
        self.touch()

    def set_status(self, status: CardStatus) -> None:
        self.status = status
        self.completed_at = utc_now() if status == CardStatus.DONE else None
        self.touch()

    def assign_to_sprint(self, sprint_id: str, sprint_number: int,
                         sprint_name: Optional[str], sprint_status: str) -> None:
        if self.sprint_id != sprint_id:
            self.sprint_logs.append(SprintLog(
                sprint_id=sprint_id,
                sprint_number=sprint_number,
                sprint_name=sprint_name,
                status=sprint_status,
            ))
        self.sprint_id = sprint_id
        self.touch()

    def end_current_sprint_log(self) -> None:
        if self.sprint_logs and self.sprint_logs[-1].ended_at is None:
            self.sprint_logs[-1].end()

    def apply(self, update: CardUpdate) -> None:
        if update.is_empty():
            return
        if update.title is not None:
            self.title = update.title
        self.description = update.description.apply(self.description)
        if update.priority is not None:
            self.priority = update.priority
        if update.status is not None and update.status != self.status:
            self.set_status(update.status)
        if update.position is not None:
            self.position = update.position
        self.points = update.points.apply(self.points)
        self.due_date = update.due_date.apply(self.due_date)
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "column_id": self.column_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "position": self.position,
            "points": self.points,
            "due_date": format_timestamp(self.due_date),
            "sprint_id": self.sprint_id,
            "card_number": self.card_number,
            "assigned_prefix": self.assigned_prefix,
            "sprint_logs": [log.to_dict() for log in self.sprint_logs],
            "completed_at": format_timestamp(self.completed_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        return cls(
            id=data.get("id") or new_id(),
            column_id=data.get("column_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            priority=CardPriority.from_str(data.get("priority", "Medium"), CardPriority.MEDIUM),
            status=CardStatus.from_str(data.get("status", "Todo"), CardStatus.TODO),
            position=int(data.get("position", 0)),
            points=data.get("points"),
            due_date=parse_timestamp(data.get("due_date")),
            sprint_id=data.get("sprint_id"),
            card_number=int(data.get("card_number", 0)),
            assigned_prefix=data.get("assigned_prefix"),
            sprint_logs=[SprintLog.from_dict(x) for x in data.get("sprint_logs") or []],
            completed_at=parse_timestamp(data.get("completed_at")),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


@dataclass
class ArchivedCard:
    """A card removed from its column, remembering where it came from."""

    card: Card
    original_column_id: str
    original_position: int
    archived_at: datetime = field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return self.card.id

    @classmethod
    def from_card(cls, card: Card) -> "ArchivedCard":
        return cls(card=card, original_column_id=card.column_id, original_position=card.position)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "card": self.card.to_dict(),
            "archived_at": format_timestamp(self.archived_at),
            "original_column_id": self.original_column_id,
            "original_position": self.original_position,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchivedCard":
        card = Card.from_dict(data.get("card") or {})
        return cls(
            card=card,
            original_column_id=data.get("original_column_id", card.column_id),
            original_position=int(data.get("original_position", card.position)),
            archived_at=parse_timestamp(data.get("archived_at")) or utc_now(),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sprint
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class SprintUpdate:
    name: FieldUpdate = field(default_factory=_no_change)
    prefix: FieldUpdate = field(default_factory=_no_change)
    card_prefix: FieldUpdate = field(default_factory=_no_change)
    start_date: FieldUpdate = field(default_factory=_no_change)
    end_date: FieldUpdate = field(default_factory=_no_change)

    def is_empty(self) -> bool:
        return all(u.is_no_change for u in (
            self.name, self.prefix, self.card_prefix, self.start_date, self.end_date,
        ))

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "SprintUpdate":
        return cls(
            name=FieldUpdate.from_payload(data, "name"),
            prefix=FieldUpdate.from_payload(data, "prefix"),
            card_prefix=FieldUpdate.from_payload(data, "card_prefix"),
            start_date=FieldUpdate.from_payload(data, "start_date", parse_timestamp),
            end_date=FieldUpdate.from_payload(data, "end_date", parse_timestamp),
        )


@dataclass
class Sprint:
    """
    A time box on a board.

    Lifecycle:
      Planning → Active → Completed
      Planning | Active → Cancelled
    Completed and Cancelled are terminal.
    """

    board_id: str
    sprint_number: int
    id: str = field(default_factory=new_id)
    name_index: Optional[int] = None
    prefix: Optional[str] = None
    card_prefix: Optional[str] = None
    status: SprintStatus = SprintStatus.PLANNING
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _TRANSITIONS = {
        "activate": (SprintStatus.PLANNING,),
        "complete": (SprintStatus.ACTIVE,),
        "cancel": (SprintStatus.PLANNING, SprintStatus.ACTIVE),
    }

    def check_transition(self, operation: str) -> None:
        """Raise ValidationError when operation is not allowed from the current status."""
        allowed = self._TRANSITIONS[operation]
        if self.status not in allowed:
            raise ValidationError(
                f"Cannot {operation} sprint {self.sprint_number}: status is {self.status.value}"
            )

    def activate(self, duration_days: int, now: Optional[datetime] = None) -> None:
        self.check_transition("activate")
        if duration_days <= 0:
            raise ValidationError(f"Sprint duration must be positive, got {duration_days}")
        start = now or utc_now()
        self.status = SprintStatus.ACTIVE
        self.start_date = start
        self.end_date = start + timedelta(days=duration_days)
        self.updated_at = start

    def complete(self) -> None:
        self.check_transition("complete")
        self.status = SprintStatus.COMPLETED
        self.updated_at = utc_now()

    def cancel(self) -> None:
        self.check_transition("cancel")
        self.status = SprintStatus.CANCELLED
        self.updated_at = utc_now()

    def is_ended(self, now: Optional[datetime] = None) -> bool:
        if self.status != SprintStatus.ACTIVE or self.end_date is None:
            return False
        return (now or utc_now()) > self.end_date

    def name(self, board: Board) -> Optional[str]:
        if self.name_index is None or self.name_index >= len(board.sprint_names):
            return None
        return board.sprint_names[self.name_index]

    def effective_prefix(self, board: Board, default: str = DEFAULT_SPRINT_PREFIX) -> str:
        return self.prefix or board.effective_sprint_prefix(default)

    def formatted_name(self, board: Board, default_prefix: str = DEFAULT_SPRINT_PREFIX) -> str:
        label = f"{self.effective_prefix(board, default_prefix)}-{self.sprint_number}"
        name = self.name(board)
        return f"{label}/{name}" if name else label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "sprint_number": self.sprint_number,
            "name_index": self.name_index,
            "prefix": self.prefix,
            "card_prefix": self.card_prefix,
            "status": self.status.value,
            "start_date": format_timestamp(self.start_date),
            "end_date": format_timestamp(self.end_date),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sprint":
        return cls(
            id=data.get("id") or new_id(),
            board_id=data.get("board_id", ""),
            sprint_number=int(data.get("sprint_number", 0)),
            name_index=data.get("name_index"),
            prefix=data.get("prefix"),
            card_prefix=data.get("card_prefix"),
            status=SprintStatus.from_str(data.get("status", "Planning"), SprintStatus.PLANNING),
            start_date=parse_timestamp(data.get("start_date")),
            end_date=parse_timestamp(data.get("end_date")),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Queries
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class CardFilter:
    """Card selection; every criterion left as None matches anything."""

    board_id: Optional[str] = None
    column_id: Optional[str] = None
    sprint_id: Optional[str] = None
    status: Optional[CardStatus] = None

    def matches(self, card: Card, column_boards: Dict[str, str]) -> bool:
        """column_boards maps column id → board id."""
        if self.board_id is not None and column_boards.get(card.column_id) != self.board_id:
            return False
        if self.column_id is not None and card.column_id != self.column_id:
            return False
        if self.sprint_id is not None and card.sprint_id != self.sprint_id:
            return False
        if self.status is not None and card.status != self.status:
            return False
        return True


def _sort_key(sort_field: SortField):
    if sort_field == SortField.POINTS:
        # Cards without points sort after pointed ones
        return lambda c: (0, c.points) if c.points is not None else (1, 0)
    if sort_field == SortField.PRIORITY:
        return lambda c: c.priority.rank
    if sort_field == SortField.CREATED_AT:
        return lambda c: c.created_at
    if sort_field == SortField.UPDATED_AT:
        return lambda c: c.updated_at
    if sort_field == SortField.STATUS:
        return lambda c: c.status.rank
    return lambda c: (c.position, c.created_at)


def sort_cards(cards: Iterable[Card], sort_field: SortField = SortField.DEFAULT,
               order: SortOrder = SortOrder.ASCENDING) -> List[Card]:
    return sorted(cards, key=_sort_key(sort_field), reverse=order == SortOrder.DESCENDING)
