"""Datatype metadata: loading, validation and the definition registry."""
