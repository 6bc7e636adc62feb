"""
Ledger error taxonomy.

- ValidationError: user input broke a range, monotonicity or future-date rule.
  Never retried, never partially applied.
- NotFoundError: the referenced record is gone (e.g. deleted from another session).
- ReplaceConfirmationRequired: the (date, machine, hour) slot is occupied and the
  caller did not confirm the replacement.
- PersistenceError: the store failed. CascadeIncompleteError narrows it to a
  cascade that stopped partway, reporting how many writes landed.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    pass


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    def __init__(self, record_id: str):
        super().__init__(f"sale record not found: {record_id}")
        self.record_id = record_id


class ReplaceConfirmationRequired(LedgerError):
    def __init__(self, existing: Any):
        super().__init__(
            f"hour {existing.hour} of machine {existing.machine_id} on {existing.sale_date} "
            f"already has a total of {existing.cumulative_total:.2f}; confirm to replace it"
        )
        self.existing = existing


class PersistenceError(LedgerError):
    pass


class CascadeIncompleteError(PersistenceError):
    def __init__(self, *, written: int, total: int, failed_record_id: Optional[str], cause: Exception):
        super().__init__(
            f"cascade stopped after {written} of {total} writes; "
            f"hourly amounts after the failed record may be stale"
        )
        self.written = written
        self.total = total
        self.failed_record_id = failed_record_id
        self.cause = cause
