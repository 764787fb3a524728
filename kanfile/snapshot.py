"""
Snapshot: the complete workspace state at one instant.

It is the unit of persistence, of undo/redo capture and of import/export.
Every collection defaults to empty when missing from the input, so a
freshly initialised file ({"boards": []}) and older partial files load.
"""
import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import SerializationError, ValidationError
from .graph import DependencyGraph
from .schema import ArchivedCard, Board, Card, Column, Sprint

COLLECTIONS = ("boards", "columns", "cards", "archived_cards", "sprints")


@dataclass(eq=False)
class Snapshot:
    boards: List[Board] = field(default_factory=list)
    columns: List[Column] = field(default_factory=list)
    cards: List[Card] = field(default_factory=list)
    archived_cards: List[ArchivedCard] = field(default_factory=list)
    sprints: List[Sprint] = field(default_factory=list)
    graph: DependencyGraph = field(default_factory=DependencyGraph)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in COLLECTIONS) and self.graph.is_empty()

    def clone(self) -> "Snapshot":
        return copy.deepcopy(self)

    def counts(self) -> Dict[str, int]:
        counts = {name: len(getattr(self, name)) for name in COLLECTIONS}
        counts["edges"] = len(self.graph.cards)
        return counts

    def __eq__(self, other) -> bool:
        """Record equality ignoring collection order."""
        if not isinstance(other, Snapshot):
            return NotImplemented
        for name in COLLECTIONS:
            mine = sorted(getattr(self, name), key=lambda r: r.id)
            theirs = sorted(getattr(other, name), key=lambda r: r.id)
            if mine != theirs:
                return False
        return self.graph == other.graph

    # ── Serialization ──

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boards": [b.to_dict() for b in self.boards],
            "columns": [c.to_dict() for c in self.columns],
            "cards": [c.to_dict() for c in self.cards],
            "archived_cards": [a.to_dict() for a in self.archived_cards],
            "sprints": [s.to_dict() for s in self.sprints],
            "graph": self.graph.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        if not isinstance(data, dict):
            raise SerializationError(f"Snapshot must be a JSON object, got {type(data).__name__}")
        try:
            return cls(
                boards=[Board.from_dict(b) for b in data.get("boards") or []],
                columns=[Column.from_dict(c) for c in data.get("columns") or []],
                cards=[Card.from_dict(c) for c in data.get("cards") or []],
                archived_cards=[ArchivedCard.from_dict(a) for a in data.get("archived_cards") or []],
                sprints=[Sprint.from_dict(s) for s in data.get("sprints") or []],
                graph=DependencyGraph.from_dict(data.get("graph")),
            )
        except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
            raise SerializationError(f"Malformed snapshot: {e}") from e

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, raw: bytes) -> "Snapshot":
        try:
            data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(f"Snapshot is not valid JSON: {e}") from e
        return cls.from_dict(data)
