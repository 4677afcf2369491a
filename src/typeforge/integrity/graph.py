"""Reference graph: directed edges between datatypes via ref fields."""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from typeforge.core.types import normalize_key
from typeforge.metadata.loader import DatatypeDefinition


@dataclass(frozen=True)
class RefEdge:
    """``from_type.field_key`` references ``to_type``."""

    from_type: str
    to_type: str
    field_key: str
    many: bool
    on_delete: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_type,
            "to": self.to_type,
            "fieldKey": self.field_key,
            "many": self.many,
            "onDelete": self.on_delete,
        }


def build_edges(definitions: Iterable[DatatypeDefinition]) -> list[RefEdge]:
    """Derive every reference edge from a set of definitions."""
    edges: list[RefEdge] = []
    for definition in definitions:
        for f in definition.fields:
            if not f.is_ref or not f.ref_target:
                continue
            many = f.ref_cardinality == "many" if f.ref_cardinality else f.array
            edges.append(
                RefEdge(
                    from_type=definition.key_lower,
                    to_type=normalize_key(f.ref_target),
                    field_key=f.key,
                    many=many,
                    on_delete=f.on_delete or "restrict",
                )
            )
    return edges


class RefGraph:
    """Edge index by source (outgoing) and by target (incoming).

    ``set_edges`` builds fresh indexes and swaps them in, so readers never
    observe a half-built graph.
    """

    def __init__(self) -> None:
        self._incoming: dict[str, list[RefEdge]] = {}
        self._outgoing: dict[str, list[RefEdge]] = {}

    def set_edges(self, edges: Iterable[RefEdge]) -> None:
        incoming: dict[str, list[RefEdge]] = {}
        outgoing: dict[str, list[RefEdge]] = {}
        for edge in edges:
            incoming.setdefault(edge.to_type, []).append(edge)
            outgoing.setdefault(edge.from_type, []).append(edge)
        self._incoming, self._outgoing = incoming, outgoing

    def incoming(self, to_type: str) -> list[RefEdge]:
        return list(self._incoming.get(normalize_key(to_type), ()))

    def outgoing(self, from_type: str) -> list[RefEdge]:
        return list(self._outgoing.get(normalize_key(from_type), ()))

    def edges(self) -> list[RefEdge]:
        return [e for edges in self._outgoing.values() for e in edges]
