# Overview: Durable local journal of sales recorded at the till.

"""
Local Transaction Journal

WHY: A sale rung up at the till must survive a dropped network, a crashed
process and a power cut. Checkout writes here first, synchronously, and only
then lets the sync engine try the server.

CONTRACT:
- append(draft) -> local_id         durable write; StorageError on failure
- list_pending() -> [SaleRecord]    pending + failed, oldest first
- mark_synced(ids) / mark_failed(id, error) / delete(ids)
                                    idempotent; unknown ids are a no-op
- get(id), count_pending()          inspection

Parked carts live in the same file but are not sales: they never sync and
vanish when resumed or discarded.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..time_utils import utcnow
from .errors import StorageError
from .records import (
    LineItem,
    SaleDraft,
    SaleRecord,
    SYNC_FAILED,
    SYNC_PENDING,
    SYNC_SYNCED,
    party_for,
)
from .storage import LocalBase, create_local_engine

logger = logging.getLogger(__name__)


class JournalEntry(LocalBase):
    __tablename__ = "journal_sales"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    local_id = Column(String(64), nullable=False, unique=True, index=True)
    line_items = Column(JSON, nullable=False)
    payment_method = Column(String(16), nullable=False)
    is_return = Column(Boolean, nullable=False, default=False)
    customer_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)
    sync_status = Column(String(16), nullable=False, default=SYNC_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)

    def to_record(self) -> SaleRecord:
        return SaleRecord(
            local_id=self.local_id,
            line_items=tuple(LineItem.from_dict(item) for item in self.line_items),
            payment_method=self.payment_method,
            is_return=bool(self.is_return),
            party=party_for(self.customer_id),
            created_at=self.created_at,
            sync_status=self.sync_status,
            attempts=self.attempts or 0,
            last_error=self.last_error,
            last_attempt_at=self.last_attempt_at,
        )


class ParkedCartEntry(LocalBase):
    __tablename__ = "parked_carts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(128), nullable=True)
    line_items = Column(JSON, nullable=False)
    parked_at = Column(DateTime, nullable=False)


@dataclass(frozen=True)
class ParkedCart:
    id: int
    label: str | None
    line_items: tuple[LineItem, ...]
    parked_at: datetime

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.line_items)


def _to_parked(entry: ParkedCartEntry) -> ParkedCart:
    return ParkedCart(
        id=entry.id,
        label=entry.label,
        line_items=tuple(LineItem.from_dict(item) for item in entry.line_items),
        parked_at=entry.parked_at,
    )


class SaleJournal:
    """Sale journal over an embedded SQLite file."""

    def __init__(self, engine):
        self.engine = engine
        self._Session = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def open(cls, path: str) -> "SaleJournal":
        try:
            return cls(create_local_engine(path))
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot open journal at {path}: {exc}") from exc

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

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def append(self, draft: SaleDraft) -> str:
        """
        Durably record a sale and return its local_id.

        Raises StorageError if the write did not commit. The caller must
        not report the sale as complete in that case.
        """
        local_id = uuid.uuid4().hex
        with self._session() as session:
            session.add(JournalEntry(
                local_id=local_id,
                line_items=[line.to_dict() for line in draft.line_items],
                payment_method=draft.payment_method,
                is_return=draft.is_return,
                customer_id=draft.party.customer_id,
                created_at=utcnow(),
                sync_status=SYNC_PENDING,
                attempts=0,
            ))
        logger.info("Journaled sale %s (%d lines, total %d)", local_id, len(draft.line_items), draft.total_cents)
        return local_id

    def list_pending(self) -> list[SaleRecord]:
        with self._session() as session:
            entries = (
                session.query(JournalEntry)
                .filter(JournalEntry.sync_status.in_((SYNC_PENDING, SYNC_FAILED)))
                .order_by(JournalEntry.seq.asc())
                .all()
            )
            return [entry.to_record() for entry in entries]

    def get(self, local_id: str) -> SaleRecord | None:
        with self._session() as session:
            entry = session.query(JournalEntry).filter_by(local_id=local_id).first()
            return entry.to_record() if entry else None

    def count_pending(self) -> int:
        with self._session() as session:
            return (
                session.query(JournalEntry)
                .filter(JournalEntry.sync_status.in_((SYNC_PENDING, SYNC_FAILED)))
                .count()
            )

    def mark_synced(self, local_ids: Iterable[str]) -> None:
        ids = list(local_ids)
        if not ids:
            return
        with self._session() as session:
            session.query(JournalEntry).filter(JournalEntry.local_id.in_(ids)).update(
                {JournalEntry.sync_status: SYNC_SYNCED, JournalEntry.last_error: None},
                synchronize_session=False,
            )

    def mark_failed(self, local_id: str, error: str) -> None:
        with self._session() as session:
            session.query(JournalEntry).filter(
                JournalEntry.local_id == local_id,
                JournalEntry.sync_status != SYNC_SYNCED,
            ).update(
                {
                    JournalEntry.sync_status: SYNC_FAILED,
                    JournalEntry.last_error: error,
                    JournalEntry.attempts: JournalEntry.attempts + 1,
                    JournalEntry.last_attempt_at: utcnow(),
                },
                synchronize_session=False,
            )
        logger.warning("Sale %s failed to sync: %s", local_id, error)

    def delete(self, local_ids: Iterable[str]) -> None:
        ids = list(local_ids)
        if not ids:
            return
        with self._session() as session:
            session.query(JournalEntry).filter(JournalEntry.local_id.in_(ids)).delete(
                synchronize_session=False
            )

    def purge_synced(self) -> int:
        """Delete entries left in 'synced' by an interrupted pass."""
        with self._session() as session:
            return session.query(JournalEntry).filter_by(sync_status=SYNC_SYNCED).delete(
                synchronize_session=False
            )

    # ------------------------------------------------------------------
    # Parked carts
    # ------------------------------------------------------------------

    def park_cart(self, line_items: Iterable[LineItem], label: str | None = None) -> int:
        items = [line.to_dict() for line in line_items]
        if not items:
            raise ValueError("cannot park an empty cart")
        with self._session() as session:
            entry = ParkedCartEntry(label=label, line_items=items, parked_at=utcnow())
            session.add(entry)
            session.flush()
            cart_id = entry.id
        logger.info("Parked cart %s (%d lines)", cart_id, len(items))
        return cart_id

    def list_parked(self) -> list[ParkedCart]:
        with self._session() as session:
            entries = session.query(ParkedCartEntry).order_by(ParkedCartEntry.parked_at.desc(), ParkedCartEntry.id.desc()).all()
            return [_to_parked(entry) for entry in entries]

    def resume_cart(self, cart_id: int) -> ParkedCart | None:
        """Return a parked cart and remove it from the parked list."""
        with self._session() as session:
            entry = session.get(ParkedCartEntry, cart_id)
            if entry is None:
                return None
            cart = _to_parked(entry)
            session.delete(entry)
            return cart

    def discard_cart(self, cart_id: int) -> bool:
        with self._session() as session:
            deleted = session.query(ParkedCartEntry).filter_by(id=cart_id).delete(synchronize_session=False)
        return deleted > 0
