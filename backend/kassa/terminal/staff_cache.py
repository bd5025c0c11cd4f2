# Overview: Reviewer-side cache of staff receipts and its reconciliation with the server.

"""
Staff Receipt Cache

A reviewer's till keeps its own copy of the staff receipt list so pending
receipts can be inspected and edited while offline.

reconcile(client):
1. Fetch the server list.
2. Unknown locally -> insert as synced.
3. Server updated_at strictly newer than the local copy -> overwrite with
   the server copy, synced. An older local edit is discarded.
4. Remaining local edits (pending) -> push the lines; success stores the
   server copy as synced. A 409 (receipt already approved or rejected on
   the server) stores the fetched server copy instead. Any other failure
   leaves the edit pending.

Precedence is whole-record last-writer-wins on updated_at; fields are not
merged.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import Column, DateTime, Integer, JSON, String
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..time_utils import is_strictly_newer, parse_iso_datetime, to_utc_z, utcnow
from .api_client import ServerClient
from .errors import ApiError, NetworkError, StorageError
from .records import LineItem, SYNC_PENDING, SYNC_SYNCED
from .storage import LocalBase, create_local_engine

logger = logging.getLogger(__name__)


class CachedStaffReceipt(LocalBase):
    __tablename__ = "staff_receipts"

    receipt_id = Column(Integer, primary_key=True, autoincrement=False)
    status = Column(String(16), nullable=False)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=True)
    sync_status = Column(String(16), nullable=False, default=SYNC_SYNCED)
    last_error = Column(String(255), nullable=True)

    def to_dict(self) -> dict:
        data = dict(self.data)
        data["updated_at"] = to_utc_z(self.updated_at)
        data["sync_status"] = self.sync_status
        return data


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    pushed: int = 0
    push_failed: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "pushed": self.pushed,
            "push_failed": self.push_failed,
            "errors": list(self.errors),
        }


class StaffReceiptCache:
    def __init__(self, engine):
        self.engine = engine
        self._Session = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def open(cls, path: str) -> "StaffReceiptCache":
        try:
            return cls(create_local_engine(path))
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot open staff receipt cache at {path}: {exc}") from exc

    @contextmanager
    def _session(self):
        session = self._Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            session.close()

    @staticmethod
    def _apply_server_copy(row: CachedStaffReceipt, data: dict) -> None:
        row.status = data["status"]
        row.data = data
        row.updated_at = parse_iso_datetime(data.get("updated_at"))
        row.sync_status = SYNC_SYNCED
        row.last_error = None

    def store(self, data: dict) -> None:
        """Store a server copy (e.g. the answer to approve/reject) as synced."""
        with self._session() as session:
            row = session.get(CachedStaffReceipt, data["id"])
            if row is None:
                row = CachedStaffReceipt(receipt_id=data["id"])
                session.add(row)
            self._apply_server_copy(row, data)

    def get(self, receipt_id: int) -> dict | None:
        with self._session() as session:
            row = session.get(CachedStaffReceipt, receipt_id)
            return row.to_dict() if row else None

    def list_receipts(self, status: str | None = None) -> list[dict]:
        with self._session() as session:
            q = session.query(CachedStaffReceipt)
            if status:
                q = q.filter(CachedStaffReceipt.status == status)
            return [row.to_dict() for row in q.order_by(CachedStaffReceipt.receipt_id.desc()).all()]

    def count_unsynced(self) -> int:
        with self._session() as session:
            return session.query(CachedStaffReceipt).filter_by(sync_status=SYNC_PENDING).count()

    def edit_lines(self, receipt_id: int, line_items: Iterable[LineItem]) -> dict:
        """
        Replace the lines of a cached pending receipt locally.

        The edit is stamped with the local clock and waits for reconcile()
        to push it.
        """
        lines = list(line_items)
        if not lines:
            raise ValueError("a receipt needs at least one line item")

        with self._session() as session:
            row = session.get(CachedStaffReceipt, receipt_id)
            if row is None:
                raise KeyError(receipt_id)
            if row.status != "pending":
                raise ValueError(f"receipt {receipt_id} is {row.status}; only pending receipts can be edited")

            data = dict(row.data)
            data["lines"] = [
                dict(line.to_dict(), line_no=index, line_total_cents=line.line_total_cents)
                for index, line in enumerate(lines, start=1)
            ]
            data["total_cents"] = sum(line.line_total_cents for line in lines)
            row.data = data
            row.updated_at = utcnow()
            row.sync_status = SYNC_PENDING
            result = row.to_dict()

        logger.info("Receipt %s edited locally (%d lines)", receipt_id, len(lines))
        return result

    def reconcile(self, client: ServerClient) -> ReconcileResult:
        """
        Merge the server staff receipt list into the cache, then push local
        edits. NetworkError from the initial fetch propagates.
        """
        server_receipts = client.list_staff_receipts()
        server_by_id = {data["id"]: data for data in server_receipts}
        result = ReconcileResult()

        with self._session() as session:
            for data in server_receipts:
                row = session.get(CachedStaffReceipt, data["id"])
                if row is None:
                    row = CachedStaffReceipt(receipt_id=data["id"])
                    self._apply_server_copy(row, data)
                    session.add(row)
                    result.inserted += 1
                    continue

                server_updated = parse_iso_datetime(data.get("updated_at"))
                if is_strictly_newer(server_updated, row.updated_at):
                    if row.sync_status == SYNC_PENDING:
                        logger.info("Server copy of receipt %s is newer; dropping local edit", row.receipt_id)
                    self._apply_server_copy(row, data)
                    result.updated += 1

            pending = [
                (row.receipt_id, [LineItem.from_dict(line).to_dict() for line in row.data.get("lines", [])])
                for row in session.query(CachedStaffReceipt).filter_by(sync_status=SYNC_PENDING).all()
            ]

        for receipt_id, lines in pending:
            try:
                server_copy = client.update_receipt_lines(receipt_id, lines)
            except ApiError as exc:
                if exc.status_code == 409 and receipt_id in server_by_id:
                    # Processed on the server meanwhile; its copy wins over the local edit
                    logger.info("Receipt %s was %s on the server; dropping local edit", receipt_id, exc.code)
                    self.store(server_by_id[receipt_id])
                    result.updated += 1
                    continue
                self._record_push_failure(result, receipt_id, exc)
                continue
            except NetworkError as exc:
                self._record_push_failure(result, receipt_id, exc)
                continue

            self.store(server_copy)
            result.pushed += 1

        logger.info(
            "Reconciled staff receipts: %d inserted, %d updated, %d pushed, %d push failures",
            result.inserted, result.updated, result.pushed, result.push_failed,
        )
        return result

    def _record_push_failure(self, result: ReconcileResult, receipt_id: int, exc: Exception) -> None:
        result.push_failed += 1
        result.errors.append({"receipt_id": receipt_id, "message": str(exc)})
        with self._session() as session:
            row = session.get(CachedStaffReceipt, receipt_id)
            if row is not None:
                row.last_error = str(exc)[:255]
        logger.warning("Could not push edit of receipt %s: %s", receipt_id, exc)
