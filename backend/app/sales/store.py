from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import NotFoundError, PersistenceError
from backend.app.models import SaleRecord, utcnow

logger = logging.getLogger(__name__)

OpKind = Literal["create", "update", "delete"]


@dataclass(frozen=True)
class StoreOp:
    kind: OpKind
    record_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


class SaleStore(Protocol):
    """Keyed document store holding SaleRecords, queried by business date."""

    def query(self, sale_date: date, machine_id: Optional[str] = None) -> List[SaleRecord]:
        ...

    def query_range(self, start: date, end: date, machine_id: Optional[str] = None) -> List[SaleRecord]:
        ...

    def get(self, record_id: str) -> Optional[SaleRecord]:
        ...

    def create(self, fields: Dict[str, Any]) -> SaleRecord:
        ...

    def update(self, record_id: str, patch: Dict[str, Any]) -> SaleRecord:
        ...

    def delete(self, record_id: str) -> None:
        ...

    def batch_write(self, ops: Sequence[StoreOp]) -> List[SaleRecord]:
        ...


class SqlSaleStore:
    """
    SaleStore on a SQLAlchemy session.

    Single writes commit immediately so a cascade that fails partway leaves the
    already written prefix persisted. `batch_write` commits once for the whole
    group.
    """

    def __init__(self, db: Session):
        self.db = db

    def query(self, sale_date: date, machine_id: Optional[str] = None) -> List[SaleRecord]:
        return self.query_range(sale_date, sale_date, machine_id)

    def query_range(self, start: date, end: date, machine_id: Optional[str] = None) -> List[SaleRecord]:
        stmt = select(SaleRecord).where(SaleRecord.sale_date >= start, SaleRecord.sale_date <= end)
        if machine_id:
            stmt = stmt.where(SaleRecord.machine_id == machine_id)
        stmt = stmt.order_by(SaleRecord.sale_date.asc(), SaleRecord.machine_id.asc(), SaleRecord.hour.asc())
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise self._fail("query", exc) from exc

    def get(self, record_id: str) -> Optional[SaleRecord]:
        try:
            return self.db.get(SaleRecord, record_id)
        except SQLAlchemyError as exc:
            raise self._fail("get", exc) from exc

    def create(self, fields: Dict[str, Any]) -> SaleRecord:
        row = self._apply_create(fields)
        self._commit("create")
        return row

    def update(self, record_id: str, patch: Dict[str, Any]) -> SaleRecord:
        row = self._apply_update(record_id, patch)
        self._commit("update")
        return row

    def delete(self, record_id: str) -> None:
        self._apply_delete(record_id)
        self._commit("delete")

    def batch_write(self, ops: Sequence[StoreOp]) -> List[SaleRecord]:
        """Apply ops in order inside one transaction; returns created/updated rows."""
        written: List[SaleRecord] = []
        try:
            for op in ops:
                if op.kind == "create":
                    written.append(self._apply_create(op.fields))
                elif op.kind == "update":
                    written.append(self._apply_update(op.record_id, op.fields))
                elif op.kind == "delete":
                    self._apply_delete(op.record_id)
                else:
                    raise ValueError(f"unknown store op: {op.kind}")
        except (NotFoundError, ValueError):
            self.db.rollback()
            raise
        self._commit("batch_write")
        return written

    # -------------------------
    # internals
    # -------------------------

    def _apply_create(self, fields: Dict[str, Any]) -> SaleRecord:
        row = SaleRecord(**fields)
        row.last_updated = utcnow()
        try:
            self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._fail("create", exc) from exc
        return row

    def _apply_update(self, record_id: Optional[str], patch: Dict[str, Any]) -> SaleRecord:
        row = self._require(record_id)
        for key, value in patch.items():
            setattr(row, key, value)
        row.last_updated = utcnow()
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._fail("update", exc) from exc
        return row

    def _apply_delete(self, record_id: Optional[str]) -> None:
        row = self._require(record_id)
        try:
            self.db.delete(row)
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc

    def _require(self, record_id: Optional[str]) -> SaleRecord:
        row = self.get(record_id) if record_id else None
        if row is None:
            raise NotFoundError(record_id or "")
        return row

    def _commit(self, op: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail(op, exc) from exc

    def _fail(self, op: str, exc: SQLAlchemyError) -> PersistenceError:
        self.db.rollback()
        logger.warning("sale store %s failed: %s", op, exc)
        return PersistenceError(f"sale store {op} failed")
