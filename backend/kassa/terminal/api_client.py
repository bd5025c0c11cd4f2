# Overview: httpx client for the Kassa server API used by the till.

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import ApiError, NetworkError

logger = logging.getLogger(__name__)


class ServerClient:
    """
    Thin wrapper over the server's JSON API.

    Transport failures and 5xx answers raise NetworkError (try again later);
    4xx answers raise ApiError (the server refused this request).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.BaseTransport] = None) -> "ServerClient":
        return cls(config.server_url, token=config.api_token, timeout=config.http_timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, json: Optional[Dict] = None, params: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, headers=self._headers(), json=json, params=params)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path}: {exc}") from exc

        if response.status_code >= 500:
            raise NetworkError(f"{method} {path}: server answered {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            raise ApiError(
                response.status_code,
                body.get("error", "http_error") if isinstance(body, dict) else "http_error",
                body.get("message", response.reason_phrase) if isinstance(body, dict) else response.reason_phrase,
                body.get("details") if isinstance(body, dict) else None,
            )
        return body

    # ------------------------------------------------------------------
    # Identity / liveness
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> Dict:
        body = self._request("POST", "/api/auth/login", json={"username": username, "password": password})
        self.token = body["token"]
        return body

    def ping(self) -> bool:
        """True when the server answers its health check."""
        try:
            self._request("GET", "/health")
        except (NetworkError, ApiError) as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def push_sales(self, payloads: List[Dict]) -> List[Dict]:
        """Submit offline sales; returns the per-item results array."""
        body = self._request("POST", "/api/receipts/bulk", json={"sales": payloads})
        return body.get("results", [])

    # ------------------------------------------------------------------
    # Staff receipts
    # ------------------------------------------------------------------

    def list_staff_receipts(self, status: Optional[str] = None) -> List[Dict]:
        params = {"status": status} if status else None
        return self._request("GET", "/api/receipts/staff", params=params).get("receipts", [])

    def update_receipt_lines(self, receipt_id: int, line_items: List[Dict]) -> Dict:
        return self._request("PUT", f"/api/receipts/{receipt_id}/lines", json={"line_items": line_items})["receipt"]

    def approve_receipt(self, receipt_id: int) -> Dict:
        return self._request("PUT", f"/api/receipts/{receipt_id}/approve")["receipt"]

    def reject_receipt(self, receipt_id: int) -> Dict:
        return self._request("PUT", f"/api/receipts/{receipt_id}/reject")["receipt"]
