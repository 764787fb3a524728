"""
Tests for the operations surface: queries, sorting, bulk operations and
board import/export.
"""
import json

import pytest

from kanfile.errors import NotFoundError, SerializationError, ValidationError
from kanfile.graph import CardEdgeType
from kanfile.operations import KanbanOperations
from kanfile.schema import (
    CLEAR,
    CardFilter,
    CardPriority,
    CardStatus,
    CardUpdate,
    FieldUpdate,
    SortField,
    SortOrder,
    TaskListView,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Queries
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_get_returns_none_for_unknown_ids(seeded):
    ws = seeded.ws
    assert ws.get_board("nope") is None
    assert ws.get_column("nope") is None
    assert ws.get_card("nope") is None
    assert ws.get_sprint("nope") is None


def test_list_columns_of_unknown_board(seeded):
    with pytest.raises(NotFoundError):
        seeded.ws.list_columns("nope")


def test_list_cards_default_order_follows_columns(seeded):
    ws = seeded.ws
    ws.move_card(seeded.cards[2].id, seeded.doing.id)
    ws.move_card(seeded.cards[0].id, seeded.done.id)
    assert [c.title for c in ws.list_cards()] == ["Second", "Third", "First"]


def test_list_cards_filters(seeded):
    ws = seeded.ws
    first, second, _ = seeded.cards
    ws.update_card(first.id, CardUpdate(status=CardStatus.DONE))
    sprint = ws.create_sprint(seeded.board.id)
    ws.assign_card_to_sprint(second.id, sprint.id)

    assert [c.id for c in ws.list_cards(CardFilter(status=CardStatus.DONE))] == [first.id]
    assert [c.id for c in ws.list_cards(CardFilter(sprint_id=sprint.id))] == [second.id]
    assert ws.list_cards(CardFilter(column_id=seeded.doing.id)) == []

    other = ws.create_board("Other")
    assert ws.list_cards(CardFilter(board_id=other.id)) == []
    assert len(ws.list_cards(CardFilter(board_id=seeded.board.id))) == 3


def test_list_cards_uses_board_sort(seeded):
    ws = seeded.ws
    first, second, third = seeded.cards
    ws.update_card(first.id, CardUpdate(priority=CardPriority.LOW))
    ws.update_card(third.id, CardUpdate(priority=CardPriority.CRITICAL))
    ws.set_board_task_sort(seeded.board.id, SortField.PRIORITY, SortOrder.DESCENDING)

    ordered = ws.list_cards(CardFilter(board_id=seeded.board.id))
    assert ordered[0].id == third.id
    assert ordered[-1].id == first.id


def test_set_task_list_view(seeded):
    board = seeded.ws.set_board_task_list_view(seeded.board.id, TaskListView.COLUMN_VIEW)
    assert board.task_list_view == TaskListView.COLUMN_VIEW


def test_list_archived_cards_by_board(seeded):
    ws = seeded.ws
    other = ws.create_board("Other")
    column = ws.create_column(other.id, "Inbox")
    stray = ws.create_card(other.id, column.id, "Stray")
    ws.archive_card(stray.id)
    ws.archive_card(seeded.cards[0].id)

    assert [a.id for a in ws.list_archived_cards(seeded.board.id)] == [seeded.cards[0].id]
    assert len(ws.list_archived_cards()) == 2


def test_card_dependencies_of_unknown_card(seeded):
    with pytest.raises(NotFoundError):
        seeded.ws.card_dependencies("nope")


def test_remove_card_dependency(seeded):
    ws = seeded.ws
    a, b, _ = seeded.cards
    ws.add_card_dependency(a.id, b.id)
    ws.remove_card_dependency(a.id, b.id)
    assert ws.card_dependencies(a.id)["blocks"] == []


def test_operations_without_workspace():
    """KanbanOperations works on a bare in-memory snapshot"""
    ops = KanbanOperations()
    board = ops.create_board("Scratch")
    column = ops.create_column(board.id, "Todo")
    card = ops.create_card(board.id, column.id, "Idea")
    assert card.display_id(board).endswith("-1")
    assert ops.list_cards() == [card]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Bulk operations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_bulk_archive_reports_each_card(seeded):
    ws = seeded.ws
    ids = [c.id for c in seeded.cards[:2]] + ["missing"]
    result = ws.bulk_archive_cards(ids)
    assert result.succeeded == ids[:2]
    assert [f.id for f in result.failed] == ["missing"]
    assert not result.all_succeeded
    assert "Not found" in result.to_dict()["failed"][0]["error"]
    assert len(ws.list_archived_cards()) == 2


def test_bulk_move(seeded):
    ws = seeded.ws
    result = ws.bulk_move_cards([c.id for c in seeded.cards], seeded.done.id)
    assert result.all_succeeded
    assert {c.column_id for c in ws.list_cards()} == {seeded.done.id}


def test_bulk_assign_sprint(seeded):
    ws = seeded.ws
    sprint = ws.create_sprint(seeded.board.id)
    ws.cancel_sprint(sprint.id)
    result = ws.bulk_assign_sprint([seeded.cards[0].id], sprint.id)
    assert result.succeeded == []
    assert len(result.failed) == 1


def test_each_bulk_item_is_undoable(seeded):
    ws = seeded.ws
    ws.bulk_archive_cards([c.id for c in seeded.cards])
    ws.undo()
    assert len(ws.list_archived_cards()) == 2


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Import / export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestImportExport:
    def _populate(self, seeded):
        ws = seeded.ws
        a, b, c = seeded.cards
        sprint = ws.create_sprint(seeded.board.id)
        ws.assign_card_to_sprint(a.id, sprint.id)
        ws.activate_sprint(sprint.id)
        ws.add_card_dependency(a.id, b.id)
        ws.archive_card(c.id)
        return sprint

    def test_export_single_board(self, seeded):
        self._populate(seeded)
        document = json.loads(seeded.ws.export_board(seeded.board.id))
        entry = document["boards"][0]
        assert entry["board"]["name"] == "Demo"
        assert len(entry["columns"]) == 3
        assert len(entry["cards"]) == 2
        assert len(entry["archived_cards"]) == 1
        assert len(entry["sprints"]) == 1
        assert len(entry["dependencies"]) == 1

    def test_export_unknown_board(self, seeded):
        with pytest.raises(NotFoundError):
            seeded.ws.export_board("nope")

    def test_import_remaps_ids(self, seeded):
        """An imported copy shares no ids with the original but keeps its structure"""
        ws = seeded.ws
        self._populate(seeded)
        text = ws.export_board(seeded.board.id)

        copy = ws.import_board(text)
        assert copy.id != seeded.board.id
        assert len(ws.list_boards()) == 2

        columns = ws.list_columns(copy.id)
        assert [c.name for c in columns] == ["Todo", "Doing", "Done"]
        column_ids = {c.id for c in columns}
        cards = ws.list_cards(CardFilter(board_id=copy.id))
        assert len(cards) == 2
        assert all(c.column_id in column_ids for c in cards)
        assert not {c.id for c in cards} & {c.id for c in seeded.cards}

        sprints = ws.list_sprints(copy.id)
        assert copy.active_sprint_id == sprints[0].id
        first = next(c for c in cards if c.title == "First")
        assert first.sprint_id == sprints[0].id
        assert first.sprint_logs[0].sprint_id == sprints[0].id

        second = next(c for c in cards if c.title == "Second")
        assert ws.card_dependencies(second.id)["blocked_by"] == [first.id]
        assert ws.list_archived_cards(copy.id)[0].original_column_id in column_ids

    def test_import_is_one_undo_step(self, seeded):
        ws = seeded.ws
        text = ws.export_board()
        ws.import_boards(text)
        assert len(ws.list_boards()) == 2
        ws.undo()
        assert len(ws.list_boards()) == 1

    def test_import_data_file_envelope(self, seeded, data_file):
        seeded.ws.save()
        target = KanbanOperations()
        boards = target.import_boards(data_file.read_text(encoding="utf-8"))
        assert [b.name for b in boards] == ["Demo"]
        assert len(target.list_cards()) == 3

    def test_import_rejects_dangling_column(self, seeded):
        document = json.loads(seeded.ws.export_board(seeded.board.id))
        document["boards"][0]["columns"] = []
        before = seeded.ws.snapshot.clone()
        with pytest.raises(ValidationError):
            seeded.ws.import_boards(json.dumps(document))
        assert seeded.ws.snapshot == before

    def test_import_rejects_dependency_cycle(self, seeded):
        ws = seeded.ws
        a, b, _ = seeded.cards
        ws.add_card_dependency(a.id, b.id)
        document = json.loads(ws.export_board(seeded.board.id))
        dependencies = document["boards"][0]["dependencies"]
        dependencies.append(dict(dependencies[0], source=b.id, target=a.id))
        before = ws.snapshot.clone()
        with pytest.raises(ValidationError, match="cycle"):
            ws.import_board(json.dumps(document))
        assert ws.snapshot == before
        assert not ws.snapshot.graph.cards.has_cycle(CardEdgeType.BLOCKS)

    def test_import_rejects_self_dependency(self, seeded):
        ws = seeded.ws
        a, b, _ = seeded.cards
        ws.add_card_dependency(a.id, b.id)
        document = json.loads(ws.export_board(seeded.board.id))
        document["boards"][0]["dependencies"][0]["target"] = a.id
        with pytest.raises(ValidationError):
            ws.import_board(json.dumps(document))

    def test_import_drops_duplicate_dependencies(self, seeded):
        ws = seeded.ws
        a, b, _ = seeded.cards
        ws.add_card_dependency(a.id, b.id)
        document = json.loads(ws.export_board(seeded.board.id))
        dependencies = document["boards"][0]["dependencies"]
        dependencies.append(dict(dependencies[0]))
        copy = ws.import_board(json.dumps(document))
        imported = {c.id for c in ws.list_cards(CardFilter(board_id=copy.id))}
        edges = [e for e in ws.snapshot.graph.cards.edges if e.source in imported]
        assert len(edges) == 1

    def test_import_garbage(self, seeded):
        with pytest.raises(SerializationError):
            seeded.ws.import_board("not json")
        with pytest.raises(SerializationError):
            seeded.ws.import_board("[1, 2]")

    def test_import_empty(self, seeded):
        with pytest.raises(ValidationError):
            seeded.ws.import_boards(json.dumps({"boards": []}))


def test_update_card_clears_field(seeded):
    ws = seeded.ws
    card = seeded.cards[0]
    ws.update_card(card.id, CardUpdate(description=FieldUpdate.set("notes")))
    ws.update_card(card.id, CardUpdate(description=CLEAR))
    assert ws.get_card(card.id).description is None


def test_relates_to_dependency(seeded):
    ws = seeded.ws
    a, b, _ = seeded.cards
    ws.add_card_dependency(a.id, b.id, CardEdgeType.RELATES_TO)
    assert ws.card_dependencies(b.id)["relates_to"] == [a.id]
