"""Shared test fixtures for kanfile tests."""

from types import SimpleNamespace

import pytest

from kanfile.config import Config
from kanfile.workspace import Workspace


@pytest.fixture
def data_file(tmp_path):
    """Path of a data file that does not exist yet."""
    return tmp_path / "k.json"


@pytest.fixture
def config(data_file):
    return Config(data_file=str(data_file), watch_debounce_ms=0)


@pytest.fixture
def workspace(data_file, config):
    """An opened, empty workspace backed by data_file."""
    return Workspace(data_file, config=config).open()


@pytest.fixture
def seeded(workspace):
    """A board with three columns and three cards in Todo."""
    board = workspace.create_board("Demo", card_prefix="DEMO")
    todo = workspace.create_column(board.id, "Todo")
    doing = workspace.create_column(board.id, "Doing")
    done = workspace.create_column(board.id, "Done")
    first = workspace.create_card(board.id, todo.id, "First")
    second = workspace.create_card(board.id, todo.id, "Second")
    third = workspace.create_card(board.id, todo.id, "Third")
    return SimpleNamespace(
        ws=workspace,
        board=board,
        todo=todo,
        doing=doing,
        done=done,
        cards=[first, second, third],
    )
