# Overview: Till configuration read from the environment.

from __future__ import annotations

import os
from dataclasses import dataclass

# Server rejects bulk requests above its MAX_BULK_SALES (default 200)
MAX_SYNC_BATCH_SIZE = 200


@dataclass(frozen=True)
class TerminalConfig:
    """
    Settings for one till.

    Env vars:
      KASSA_SERVER_URL       base URL of the Kassa server (default: http://127.0.0.1:5000)
      KASSA_API_TOKEN        bearer token of the till's user
      KASSA_JOURNAL_PATH     SQLite file holding the local journal (default: kassa_journal.sqlite3)
      KASSA_SYNC_INTERVAL    seconds between connectivity probes (default: 30)
      KASSA_SYNC_BATCH_SIZE  sales per bulk request (default: 50, clamped to 1..200)
      KASSA_HTTP_TIMEOUT     seconds per HTTP request (default: 10)
    """
    server_url: str = "http://127.0.0.1:5000"
    api_token: str | None = None
    journal_path: str = "kassa_journal.sqlite3"
    sync_interval: float = 30.0
    sync_batch_size: int = 50
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls, environ=None) -> "TerminalConfig":
        env = os.environ if environ is None else environ
        batch_size = int(env.get("KASSA_SYNC_BATCH_SIZE", cls.sync_batch_size))
        return cls(
            server_url=env.get("KASSA_SERVER_URL", cls.server_url),
            api_token=env.get("KASSA_API_TOKEN") or None,
            journal_path=env.get("KASSA_JOURNAL_PATH", cls.journal_path),
            sync_interval=float(env.get("KASSA_SYNC_INTERVAL", cls.sync_interval)),
            sync_batch_size=min(max(batch_size, 1), MAX_SYNC_BATCH_SIZE),
            http_timeout=float(env.get("KASSA_HTTP_TIMEOUT", cls.http_timeout)),
        )
