"""Write-behind batching of notification persistence."""

from .batch_writer import BatchWriter

__all__ = ["BatchWriter"]
