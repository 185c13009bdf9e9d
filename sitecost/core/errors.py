"""Exception hierarchy for SiteCost.

Classification failures are recovered inside the matcher. Persistence
failures are fatal when loading a batch and per-item when committing one.
"""

from __future__ import annotations


class SiteCostError(Exception):
    """Base class for all SiteCost errors."""


class ClassificationError(SiteCostError):
    """The assisted-classification capability failed or answered nonsense."""


class MappingError(SiteCostError):
    """A mapping request was rejected (bad confidence or method, wrong project)."""


class PersistenceError(SiteCostError):
    """The relational store could not be read or written."""


class NotFoundError(SiteCostError):
    """A referenced record does not exist."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class LineItemNotFoundError(NotFoundError, MappingError):
    """A mapping referenced an unknown invoice or estimate line item."""
