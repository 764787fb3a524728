"""
Dependency graph between cards.

Edges are stored as a flat list and every traversal builds a transient
adjacency map from the active (non-archived) edges. Edge types that
require a DAG reject insertions that would close a cycle.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import ValidationError
from .schema import _NamedEnum, format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class EdgeDirection(_NamedEnum):
    DIRECTED = "Directed"
    BIDIRECTIONAL = "Bidirectional"


class CardEdgeType(_NamedEnum):
    """Blocks: source must finish before target. RelatesTo: loose link."""

    BLOCKS = "Blocks"
    RELATES_TO = "RelatesTo"

    @property
    def requires_dag(self) -> bool:
        return self == CardEdgeType.BLOCKS

    @property
    def direction(self) -> EdgeDirection:
        if self == CardEdgeType.BLOCKS:
            return EdgeDirection.DIRECTED
        return EdgeDirection.BIDIRECTIONAL


@dataclass
class Edge:
    source: str
    target: str
    edge_type: CardEdgeType
    direction: EdgeDirection = EdgeDirection.DIRECTED
    weight: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now)
    archived_at: Optional[datetime] = None

    @classmethod
    def for_type(cls, source: str, target: str, edge_type: CardEdgeType,
                 weight: Optional[float] = None) -> "Edge":
        return cls(source=source, target=target, edge_type=edge_type,
                   direction=edge_type.direction, weight=weight)

    @property
    def is_active(self) -> bool:
        return self.archived_at is None

    def involves(self, node: str) -> bool:
        return self.source == node or self.target == node

    def connects(self, a: str, b: str) -> bool:
        if self.source == a and self.target == b:
            return True
        return self.direction == EdgeDirection.BIDIRECTIONAL and self.source == b and self.target == a

    def same_link(self, other: "Edge") -> bool:
        """True when both edges describe the same (source, target, type, direction)."""
        if self.edge_type != other.edge_type or self.direction != other.direction:
            return False
        return self.connects(other.source, other.target)

    def archive(self) -> None:
        if self.archived_at is None:
            self.archived_at = utc_now()

    def unarchive(self) -> None:
        self.archived_at = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "edge_type": self.edge_type.value,
            "direction": self.direction.value,
            "weight": self.weight,
            "created_at": format_timestamp(self.created_at),
            "archived_at": format_timestamp(self.archived_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        edge_type = CardEdgeType.from_str(data.get("edge_type", "Blocks"))
        direction = data.get("direction")
        return cls(
            source=data["source"],
            target=data["target"],
            edge_type=edge_type,
            direction=EdgeDirection.from_str(direction) if direction else edge_type.direction,
            weight=data.get("weight"),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            archived_at=parse_timestamp(data.get("archived_at")),
        )


class Graph:
    """Edge set with the traversal algorithms used by dependency commands."""

    def __init__(self, edges: Optional[Iterable[Edge]] = None):
        self.edges: List[Edge] = list(edges or [])

    def __len__(self) -> int:
        return len(self.edges)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return self._signature() == other._signature()

    def _signature(self) -> List[Tuple[str, str, str, str, bool]]:
        return sorted(
            (e.source, e.target, e.edge_type.value, e.direction.value, e.is_active)
            for e in self.edges
        )

    # ── Lookup ──

    def find_edge(self, source: str, target: str, edge_type: CardEdgeType) -> Optional[Edge]:
        for edge in self.edges:
            if edge.edge_type == edge_type and edge.connects(source, target):
                return edge
        return None

    def active_edges(self, edge_type: Optional[CardEdgeType] = None) -> List[Edge]:
        return [
            e for e in self.edges
            if e.is_active and (edge_type is None or e.edge_type == edge_type)
        ]

    def outgoing(self, node: str, edge_type: Optional[CardEdgeType] = None) -> List[Edge]:
        return [e for e in self.active_edges(edge_type) if e.source == node]

    def incoming(self, node: str, edge_type: Optional[CardEdgeType] = None) -> List[Edge]:
        return [e for e in self.active_edges(edge_type) if e.target == node]

    def adjacency(self, edge_type: Optional[CardEdgeType] = None) -> Dict[str, List[str]]:
        """Active adjacency map; bidirectional edges appear in both directions."""
        adjacency: Dict[str, List[str]] = {}
        for edge in self.active_edges(edge_type):
            adjacency.setdefault(edge.source, []).append(edge.target)
            if edge.direction == EdgeDirection.BIDIRECTIONAL:
                adjacency.setdefault(edge.target, []).append(edge.source)
        return adjacency

    # ── Algorithms ──

    def has_path(self, start: str, goal: str, edge_type: Optional[CardEdgeType] = None) -> bool:
        adjacency = self.adjacency(edge_type)
        stack = [start]
        seen: Set[str] = set()
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(adjacency.get(node, []))
        return False

    def would_create_cycle(self, source: str, target: str, edge_type: CardEdgeType) -> bool:
        """A new source → target edge closes a cycle iff target already reaches source."""
        if source == target:
            return True
        return self.has_path(target, source, edge_type)

    def has_cycle(self, edge_type: Optional[CardEdgeType] = None) -> bool:
        """DFS with a recursion stack over directed active edges."""
        adjacency: Dict[str, List[str]] = {}
        for edge in self.active_edges(edge_type):
            if edge.direction == EdgeDirection.DIRECTED:
                adjacency.setdefault(edge.source, []).append(edge.target)

        visited: Set[str] = set()
        on_stack: Set[str] = set()

        def visit(node: str) -> bool:
            visited.add(node)
            on_stack.add(node)
            for nxt in adjacency.get(node, []):
                if nxt in on_stack:
                    return True
                if nxt not in visited and visit(nxt):
                    return True
            on_stack.discard(node)
            return False

        return any(visit(node) for node in list(adjacency) if node not in visited)

    def reachable_from(self, node: str, edge_type: Optional[CardEdgeType] = None) -> Set[str]:
        """Breadth-first closure over active edges, excluding the start node."""
        adjacency = self.adjacency(edge_type)
        seen: Set[str] = {node}
        queue = deque([node])
        while queue:
            current = queue.popleft()
            for nxt in adjacency.get(current, []):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        seen.discard(node)
        return seen

    # ── Mutation ──

    def check_edge(self, edge: Edge) -> None:
        """Raise ValidationError if the edge may not be added."""
        if edge.source == edge.target:
            raise ValidationError(f"A card cannot depend on itself ({edge.source})")
        if edge.edge_type.requires_dag and self.would_create_cycle(edge.source, edge.target, edge.edge_type):
            raise ValidationError(
                f"Adding {edge.edge_type.value} edge {edge.source} -> {edge.target} would create a cycle"
            )

    def add_edge(self, edge: Edge) -> bool:
        """Add an edge. Returns False when the same link already exists."""
        for existing in self.edges:
            if existing.same_link(edge):
                if not existing.is_active:
                    raise ValidationError(
                        f"{edge.edge_type.value} edge {edge.source} -> {edge.target} exists but is archived"
                    )
                return False
        self.check_edge(edge)
        self.edges.append(edge)
        return True

    def remove_edge(self, source: str, target: str, edge_type: CardEdgeType) -> bool:
        edge = self.find_edge(source, target, edge_type)
        if edge is None:
            return False
        self.edges.remove(edge)
        return True

    def archive_edge(self, source: str, target: str, edge_type: CardEdgeType) -> bool:
        edge = self.find_edge(source, target, edge_type)
        if edge is None:
            return False
        edge.archive()
        return True

    def unarchive_edge(self, source: str, target: str, edge_type: CardEdgeType) -> bool:
        edge = self.find_edge(source, target, edge_type)
        if edge is None:
            return False
        if not edge.is_active and edge.edge_type.requires_dag and \
                self.would_create_cycle(edge.source, edge.target, edge.edge_type):
            raise ValidationError(
                f"Restoring {edge.edge_type.value} edge {edge.source} -> {edge.target} would create a cycle"
            )
        edge.unarchive()
        return True

    def remove_node(self, node: str) -> int:
        before = len(self.edges)
        self.edges = [e for e in self.edges if not e.involves(node)]
        return before - len(self.edges)

    def archive_node(self, node: str) -> int:
        count = 0
        for edge in self.edges:
            if edge.involves(node) and edge.is_active:
                edge.archive()
                count += 1
        return count

    def unarchive_node(self, node: str) -> List[Edge]:
        """Reactivate the node's edges. Edges that would now close a cycle stay archived and are returned."""
        skipped: List[Edge] = []
        for edge in self.edges:
            if not edge.involves(node) or edge.is_active:
                continue
            if edge.edge_type.requires_dag and self.would_create_cycle(edge.source, edge.target, edge.edge_type):
                skipped.append(edge)
                continue
            edge.unarchive()
        if skipped:
            logger.warning(f"Left {len(skipped)} edge(s) of {node} archived: restoring them would create a cycle")
        return skipped

    def to_dict(self) -> Dict[str, Any]:
        return {"edges": [e.to_dict() for e in self.edges]}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Graph":
        return cls(Edge.from_dict(e) for e in (data or {}).get("edges") or [])

    def copy(self) -> "Graph":
        return Graph(
            Edge(e.source, e.target, e.edge_type, e.direction, e.weight, e.created_at, e.archived_at)
            for e in self.edges
        )


class DependencyGraph:
    """Per-entity-type edge sets. Only cards have dependencies today."""

    def __init__(self, cards: Optional[Graph] = None):
        self.cards = cards if cards is not None else Graph()

    def is_empty(self) -> bool:
        return len(self.cards) == 0

    def __eq__(self, other) -> bool:
        if not isinstance(other, DependencyGraph):
            return NotImplemented
        return self.cards == other.cards

    def blockers_of(self, card_id: str) -> List[str]:
        """Cards that block card_id."""
        return [e.source for e in self.cards.incoming(card_id, CardEdgeType.BLOCKS)]

    def blocked_by(self, card_id: str) -> List[str]:
        """Cards that card_id blocks."""
        return [e.target for e in self.cards.outgoing(card_id, CardEdgeType.BLOCKS)]

    def related_to(self, card_id: str) -> List[str]:
        return self.cards.adjacency(CardEdgeType.RELATES_TO).get(card_id, [])

    def edge_keys(self) -> List[Tuple[str, str, str, str]]:
        return [(e.source, e.target, e.edge_type.value, e.direction.value) for e in self.cards.edges]

    def to_dict(self) -> Dict[str, Any]:
        return {"cards": self.cards.to_dict()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DependencyGraph":
        return cls(Graph.from_dict((data or {}).get("cards")))

    def copy(self) -> "DependencyGraph":
        return DependencyGraph(self.cards.copy())
