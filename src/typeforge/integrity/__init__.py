"""Reference graph and referential integrity enforcement."""

from typeforge.integrity.graph import RefEdge, RefGraph, build_edges
from typeforge.integrity.service import RefIntegrityService

__all__ = ["RefEdge", "RefGraph", "RefIntegrityService", "build_edges"]
