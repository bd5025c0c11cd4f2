# Overview: Sync coordinator; drains the local journal into the server's bulk endpoint.

"""
Sync Coordinator

One pass:
1. Read pending sales oldest first (nothing pending -> zero counts).
2. Post them in batches to POST /api/receipts/bulk; local_id is sent as
   offline_id, so a batch that is replayed after a lost response is harmless.
3. synced / already_synced -> mark synced, then delete from the journal.
4. Item error -> mark failed; the entry is retried by later passes.
5. NetworkError (or a refused request) on a batch -> that batch and every
   later batch stay as they are; earlier batches keep their outcome.

Only one pass runs at a time. A sync() call that finds another pass in
flight returns immediately with skipped=True and does not read the journal.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from .api_client import ServerClient
from .errors import ApiError, NetworkError
from .journal import SaleJournal

logger = logging.getLogger(__name__)

OK_STATUSES = ("synced", "already_synced")


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "errors": list(self.errors),
            "skipped": self.skipped,
        }


class SyncCoordinator:
    def __init__(self, journal: SaleJournal, client: ServerClient, batch_size: int = 50):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.journal = journal
        self.client = client
        self.batch_size = batch_size
        self._guard = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def sync(self) -> SyncResult:
        """Run one pass unless one is already running."""
        if not self._guard.acquire(blocking=False):
            logger.debug("Sync already in progress; skipping")
            return SyncResult(skipped=True)
        try:
            return self._run_pass()
        finally:
            self._guard.release()

    def _run_pass(self) -> SyncResult:
        purged = self.journal.purge_synced()
        if purged:
            logger.info("Removed %d already-synced journal entries", purged)

        result = SyncResult()
        pending = self.journal.list_pending()
        if not pending:
            return result

        logger.info("Sync pass started: %d pending sales", len(pending))
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                outcomes = self.client.push_sales([sale.to_payload() for sale in batch])
            except (NetworkError, ApiError) as exc:
                remaining = len(pending) - start
                result.failed += remaining
                result.errors.append({
                    "local_id": None,
                    "error": "network_error" if isinstance(exc, NetworkError) else exc.code,
                    "message": str(exc),
                    "count": remaining,
                })
                logger.warning("Sync pass stopped, %d sales left pending: %s", remaining, exc)
                break

            self._record_batch(batch, outcomes, result)

        logger.info("Sync pass finished: %d synced, %d failed", result.synced, result.failed)
        return result

    def _record_batch(self, batch, outcomes, result: SyncResult) -> None:
        by_id = {o.get("offline_id"): o for o in outcomes if isinstance(o, dict)}

        synced_ids = []
        for sale in batch:
            outcome = by_id.get(sale.local_id)
            if outcome is not None and outcome.get("status") in OK_STATUSES:
                synced_ids.append(sale.local_id)
                continue

            if outcome is None:
                code, message = "missing_result", "server returned no result for this sale"
            else:
                code = outcome.get("error", "error")
                message = outcome.get("message", code)
            self.journal.mark_failed(sale.local_id, f"{code}: {message}")
            result.failed += 1
            result.errors.append({"local_id": sale.local_id, "error": code, "message": message})

        if synced_ids:
            self.journal.mark_synced(synced_ids)
            self.journal.delete(synced_ids)
            result.synced += len(synced_ids)
