"""
Inventory Analytics - Exceptions
================================

Error taxonomy for the engine:

- UpstreamUnavailableError: a required read from the data store failed.
  Fatal for the whole operation; no partial results are returned.
- PersistenceError: a single safety-stock write failed. Callers log it,
  skip the candidate and carry on with the batch.

Degenerate computations (empty series, zero variance, zero baseline) are never
raised; each engine resolves them with its own fallback.
"""

from __future__ import annotations

from typing import Optional


class InventoryAnalyticsError(Exception):
    """Base class for all engine errors."""
    pass


class UpstreamUnavailableError(InventoryAnalyticsError):
    """Raised when a bulk read from the inventory data store fails."""

    def __init__(self, resource: str, message: str = "", cause: Optional[BaseException] = None):
        self.resource = resource
        self.cause = cause
        detail = message or (str(cause) if cause else "request failed")
        super().__init__(f"Failed to fetch {resource}: {detail}")


class PersistenceError(InventoryAnalyticsError):
    """Raised when the safety-stock write-back for one balance fails."""

    def __init__(self, warehouse_id: str, product_id: str, message: str = ""):
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        super().__init__(
            f"Failed to update safety stock for {product_id} in {warehouse_id}"
            + (f": {message}" if message else "")
        )
