"""
Tests for the record schema: enums, FieldUpdate, counters, serialization.
"""
from datetime import datetime, timedelta, timezone

import pytest

from kanfile.errors import ValidationError
from kanfile.schema import (
    CLEAR,
    NO_CHANGE,
    Board,
    Card,
    CardPriority,
    CardStatus,
    CardUpdate,
    FieldUpdate,
    SortField,
    SortOrder,
    Sprint,
    SprintStatus,
    parse_timestamp,
    sort_cards,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums and timestamps
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_enum_from_str_is_lenient():
    """Case, underscores and spaces are ignored"""
    assert CardStatus.from_str("in_progress") == CardStatus.IN_PROGRESS
    assert CardStatus.from_str("InProgress") == CardStatus.IN_PROGRESS
    assert CardPriority.from_str("HIGH") == CardPriority.HIGH
    assert CardPriority.from_str(CardPriority.LOW) == CardPriority.LOW


def test_enum_from_str_rejects_unknown():
    with pytest.raises(ValidationError, match="Invalid CardStatus"):
        CardStatus.from_str("Someday")
    assert CardStatus.from_str("Someday", CardStatus.TODO) == CardStatus.TODO


def test_parse_timestamp_variants():
    """Z suffix, nanoseconds and naive values all come back as aware UTC"""
    z = parse_timestamp("2024-03-01T10:00:00Z")
    assert z == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    nanos = parse_timestamp("2024-03-01T10:00:00.123456789+00:00")
    assert nanos.microsecond == 123456

    naive = parse_timestamp("2024-03-01T10:00:00")
    assert naive.tzinfo is not None

    assert parse_timestamp(None) is None
    with pytest.raises(ValidationError):
        parse_timestamp("yesterday")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# FieldUpdate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_field_update_states():
    assert NO_CHANGE.apply(5) == 5
    assert CLEAR.apply(5) is None
    assert FieldUpdate.set(7).apply(5) == 7
    assert FieldUpdate.from_optional(None) == CLEAR


def test_field_update_from_payload():
    """Missing key leaves the field alone, null clears it"""
    data = {"points": "3", "description": None}
    assert FieldUpdate.from_payload(data, "points", int) == FieldUpdate.set(3)
    assert FieldUpdate.from_payload(data, "description").is_clear
    assert FieldUpdate.from_payload(data, "due_date").is_no_change


def test_field_update_set_requires_value():
    with pytest.raises(ValueError):
        FieldUpdate.set(None)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Board counters
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_card_numbers_are_per_prefix():
    board = Board(name="B", card_prefix="KAN")
    assert board.next_card_number("KAN") == 1
    assert board.next_card_number("KAN") == 2
    assert board.next_card_number("BUG") == 1


def test_counter_initialized_from_existing_cards():
    """Files written before per-prefix counters keep numbering after the highest card"""
    board = Board(name="B", card_prefix="KAN")
    cards = [Card(column_id="c", title="x", card_number=n, assigned_prefix="KAN") for n in (3, 9)]
    board.ensure_card_counter_initialized("KAN", cards)
    assert board.next_card_number("KAN") == 10


def test_legacy_board_fields_are_mapped():
    board = Board.from_dict({"name": "Old", "branch_prefix": "rel", "next_card_number": 42})
    assert board.sprint_prefix == "rel"
    assert board.next_card_number(board.effective_card_prefix()) == 42


def test_sprint_name_pool():
    board = Board(name="B", sprint_names=["alpha", "beta"])
    assert board.consume_sprint_name() == 0
    assert board.add_sprint_name_at_used_index("custom") == 1
    assert board.sprint_names == ["alpha", "custom", "beta"]
    assert board.consume_sprint_name() == 2
    assert board.consume_sprint_name() is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Cards and sprints
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_card_done_sets_completed_at():
    card = Card(column_id="c", title="x")
    card.apply(CardUpdate(status=CardStatus.DONE))
    assert card.completed_at is not None
    card.apply(CardUpdate(status=CardStatus.TODO))
    assert card.completed_at is None


def test_card_display_id():
    board = Board(name="B", card_prefix="KAN")
    card = Card.create(board, "col", "Title", 0, "KAN")
    assert card.display_id(board) == "KAN-1"


def test_card_round_trip():
    card = Card(column_id="c", title="x", points=5, priority=CardPriority.HIGH,
                due_date=datetime(2024, 5, 1, tzinfo=timezone.utc))
    restored = Card.from_dict(card.to_dict())
    assert restored == card
    assert card.to_dict()["priority"] == "High"


class TestSprintLifecycle:
    def setup_method(self):
        self.board = Board(name="B", sprint_prefix="rel", sprint_names=["apollo"])
        self.sprint = Sprint(board_id=self.board.id, sprint_number=3, name_index=0)

    def test_activate_sets_dates(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.sprint.activate(7, now=now)
        assert self.sprint.status == SprintStatus.ACTIVE
        assert self.sprint.end_date - self.sprint.start_date == timedelta(days=7)
        assert self.sprint.is_ended(now + timedelta(days=8))

    def test_invalid_transitions(self):
        with pytest.raises(ValidationError):
            self.sprint.complete()
        self.sprint.activate(14)
        with pytest.raises(ValidationError):
            self.sprint.activate(14)
        self.sprint.complete()
        with pytest.raises(ValidationError):
            self.sprint.cancel()

    def test_cancel_from_planning(self):
        self.sprint.cancel()
        assert self.sprint.status == SprintStatus.CANCELLED

    def test_formatted_name(self):
        assert self.sprint.formatted_name(self.board) == "rel-3/apollo"
        self.sprint.name_index = None
        assert self.sprint.formatted_name(self.board) == "rel-3"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sorting
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_sort_by_points_puts_unpointed_last():
    cards = [
        Card(column_id="c", title="none"),
        Card(column_id="c", title="eight", points=8),
        Card(column_id="c", title="one", points=1),
    ]
    ordered = sort_cards(cards, SortField.POINTS, SortOrder.ASCENDING)
    assert [c.title for c in ordered] == ["one", "eight", "none"]


def test_sort_by_priority_descending():
    cards = [
        Card(column_id="c", title="low", priority=CardPriority.LOW),
        Card(column_id="c", title="crit", priority=CardPriority.CRITICAL),
    ]
    ordered = sort_cards(cards, SortField.PRIORITY, SortOrder.DESCENDING)
    assert ordered[0].title == "crit"
