# pellet_watch/errors.py

"""Exception hierarchy for the price pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pellet_watch.services.ingestion_pipeline import BatchResult


class PipelineError(Exception):
    """Base class for all pellet_watch errors."""


class ItemValidationError(PipelineError):
    """A raw scraped item failed validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class DataOutOfRangeError(PipelineError):
    """An observation falls into a month with no online partition.

    This is an operational misconfiguration (partitions were not
    provisioned ahead of the write path), not a data problem.
    """

    def __init__(self, observed_at: datetime, partition: str) -> None:
        self.observed_at = observed_at
        self.partition = partition
        super().__init__(
            f"No online partition {partition} for observation at "
            f"{observed_at.isoformat()}"
        )


class CatalogConflictError(PipelineError):
    """Get-or-create kept losing to concurrent writers."""


class BatchStoreError(PipelineError):
    """A store error occurred while ingesting a batch.

    Raised once the rest of the batch has been processed; the partial
    result is available as :attr:`result`.
    """

    def __init__(self, message: str, result: BatchResult) -> None:
        self.result = result
        super().__init__(message)
