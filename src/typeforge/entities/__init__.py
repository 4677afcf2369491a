"""Entity lifecycle orchestration."""

from typeforge.entities.service import EntityLifecycleService

__all__ = ["EntityLifecycleService"]
