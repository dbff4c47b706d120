"""
backend/remote_store.py

HTTP client for the remote document store (backend-as-a-service).

This module ensures:
1. All remote calls share one requests.Session, base URL, timeout and auth header
2. Payloads are encoded with the timestamp codec, responses decoded with it
3. Every failure mode (timeout, connection, non-2xx, bad JSON) becomes RemoteStoreError

It never retries and never falls back; DataService owns the fallback policy.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Sequence

import requests

try:
    from backend.errors import RemoteStoreError
    from backend.timestamps import decode_document, encode_document, encode_value
except ModuleNotFoundError:
    from errors import RemoteStoreError
    from timestamps import decode_document, encode_document, encode_value

logger = logging.getLogger("project.remote")

Direction = Literal["asc", "desc"]


class RemoteDocumentStore:
    """Collection-scoped document operations over the store's REST contract."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("Remote store base URL cannot be empty")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise RemoteStoreError(f"Timeout on {method} {path}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteStoreError(f"Connection error on {method} {path}: {e.__class__.__name__}") from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code >= 400:
            raise RemoteStoreError(
                f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteStoreError(f"Invalid JSON from {method} {path}") from e

    @staticmethod
    def _flatten(document: Any) -> Dict[str, Any]:
        """{"id": ..., "data": {...}} -> {"id": ..., **decoded data}"""
        if not isinstance(document, dict) or "id" not in document:
            raise RemoteStoreError("Malformed document in response")
        data = decode_document(document.get("data") or {}) or {}
        return {**data, "id": str(document["id"])}

    def _flatten_many(self, payload: Any) -> List[Dict[str, Any]]:
        if not isinstance(payload, dict) or not isinstance(payload.get("documents"), list):
            raise RemoteStoreError("Malformed document list in response")
        return [self._flatten(d) for d in payload["documents"]]

    @staticmethod
    def _documents_path(collection: str, record_id: Optional[str] = None) -> str:
        path = f"/collections/{collection}/documents"
        if record_id is not None:
            path += f"/{record_id}"
        return path

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------
    def add(
        self,
        collection: str,
        data: Dict[str, Any],
        server_timestamps: Sequence[str] = (),
    ) -> Dict[str, Any]:
        body = {"data": encode_document(data), "serverTimestamps": list(server_timestamps)}
        return self._flatten(self._request("POST", self._documents_path(collection), json=body))

    def set(
        self,
        collection: str,
        record_id: str,
        data: Dict[str, Any],
        server_timestamps: Sequence[str] = (),
    ) -> Dict[str, Any]:
        body = {"data": encode_document(data), "serverTimestamps": list(server_timestamps)}
        return self._flatten(self._request("PUT", self._documents_path(collection, record_id), json=body))

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        payload = self._request("GET", self._documents_path(collection, record_id), allow_404=True)
        if payload is None:
            return None
        return self._flatten(payload)

    def list(
        self,
        collection: str,
        order_by: str = "created_at",
        direction: Direction = "desc",
    ) -> List[Dict[str, Any]]:
        payload = self._request(
            "GET",
            self._documents_path(collection),
            params={"orderBy": order_by, "direction": direction},
        )
        return self._flatten_many(payload)

    def update(
        self,
        collection: str,
        record_id: str,
        data: Dict[str, Any],
        server_timestamps: Sequence[str] = (),
    ) -> Dict[str, Any]:
        body = {"data": encode_document(data), "serverTimestamps": list(server_timestamps)}
        return self._flatten(self._request("PATCH", self._documents_path(collection, record_id), json=body))

    def delete(self, collection: str, record_id: str) -> None:
        self._request("DELETE", self._documents_path(collection, record_id), allow_404=True)

    def query(
        self,
        collection: str,
        where: Sequence[Dict[str, Any]],
        order_by: str = "created_at",
        direction: Direction = "desc",
    ) -> List[Dict[str, Any]]:
        body = {
            "where": [
                {"field": w["field"], "op": w["op"], "value": encode_value(w["value"])}
                for w in where
            ],
            "orderBy": order_by,
            "direction": direction,
        }
        return self._flatten_many(self._request("POST", f"/collections/{collection}:query", json=body))

    def ping(self) -> bool:
        """Return True when the store answers its health endpoint."""
        try:
            self._request("GET", "/health")
            return True
        except RemoteStoreError as e:
            logger.debug("[REMOTE] Health check failed: %s", e)
            return False
