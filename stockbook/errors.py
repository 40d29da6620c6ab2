"""
Typed errors raised by the stockbook services.

    StockbookError
    +-- ValidationError       rejected before any write
    +-- StoreError            a store call failed
        +-- PartialBatchFailure   materialization stopped after some writes

Each class carries a machine-readable ``code``.
"""

from __future__ import annotations


class StockbookError(Exception):
    code: str = "STOCKBOOK_ERROR"


class ValidationError(StockbookError, ValueError):
    code = "VALIDATION_ERROR"


class StoreError(StockbookError):
    code = "STORE_ERROR"

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}" if message else f"{operation} failed")


class PartialBatchFailure(StoreError):
    code = "PARTIAL_BATCH_FAILURE"

    def __init__(self, batch_code: str, written_ids: list[str], cause: StoreError):
        self.batch_code = batch_code
        self.written_ids = list(written_ids)
        self.cause = cause
        super().__init__(
            "materialize_batch",
            f"batch {batch_code} stopped after {len(self.written_ids)} item write(s): {cause}",
        )
