"""Datastore backed by a PostgREST-style HTTP API."""

import time
import logging
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from typing import Any, Dict, List, Optional

from ..exceptions import DatastoreError
from ..models.migration import DatastoreSettings
from .base import Datastore, Filter, FilterOp

logger = logging.getLogger(__name__)

# Status codes worth retrying
_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_filter(flt: Filter) -> str:
    if flt.op == FilterOp.IN:
        quoted = ",".join(f'"{_format_scalar(v)}"' for v in flt.value)
        return f"in.({quoted})"
    return f"{flt.op.value}.{_format_scalar(flt.value)}"


def _format_order(order_by: List[str]) -> str:
    parts = []
    for column in order_by:
        if column.startswith("-"):
            parts.append(f"{column[1:]}.desc")
        else:
            parts.append(f"{column}.asc")
    return ",".join(parts)


class RestDatastore(Datastore):
    """
    Datastore talking to ``/rest/v1/<table>`` and ``/rest/v1/rpc/<function>``.

    The compound operations map onto server-side functions that run in one
    transaction: ``create_migration_snapshot``, ``rollback_to_snapshot``,
    ``claim_migration_work`` and ``calculate_migration_quality``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        schema: str = "public",
        rate_limit: float = 0.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the REST datastore.

        Args:
            base_url: Project URL, without the ``/rest/v1`` suffix
            api_key: Service key sent as ``apikey`` and bearer token
            timeout: Per-request timeout in seconds
            schema: Database schema to read and write
            rate_limit: Max requests per second, 0 for unlimited
            max_retries: Transport retries for idempotent requests
            session: Pre-built session (tests inject a mock here)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.schema = schema
        self.rate_limit = rate_limit
        self.max_retries = max_retries
        self._last_request_time = 0.0
        self._session = session or self._create_session()

    @classmethod
    def from_settings(cls, settings: DatastoreSettings) -> "RestDatastore":
        return cls(
            base_url=settings.url,
            api_key=settings.api_key,
            timeout=settings.timeout,
            schema=settings.schema,
        )

    def _create_session(self) -> requests.Session:
        """Create a requests session with authentication and retry logic."""
        session = requests.Session()

        # Only idempotent methods are retried here; failed writes go to the retry queue
        retries = Retry(
            total=self.max_retries,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET", "HEAD"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        if self.api_key:
            session.headers["apikey"] = self.api_key
            session.headers["Authorization"] = f"Bearer {self.api_key}"

        session.headers["Content-Type"] = "application/json"
        session.headers["Accept-Profile"] = self.schema
        session.headers["Content-Profile"] = self.schema

        return session

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[List[tuple]] = None,
        json_body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        """Send one request and decode the JSON body, mapping failures to DatastoreError."""
        url = f"{self.base_url}/rest/v1/{path}"
        headers = {"Prefer": prefer} if prefer else None

        self._rate_limit_wait()

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"Datastore request {method} {path} failed: {e}")
            raise DatastoreError(str(e), transient=True, code="CONNECTION") from e

        if response.status_code >= 400:
            message = response.text
            try:
                error_data = response.json()
                message = error_data.get("message") or error_data.get("error") or str(error_data)
            except ValueError:
                pass
            transient = response.status_code in _TRANSIENT_STATUS
            logger.error(f"Datastore {method} {path} returned {response.status_code}: {message}")
            raise DatastoreError(message, transient=transient, code=str(response.status_code))

        if not response.content:
            return None
        return response.json()

    def _query_params(
        self,
        filters: Optional[List[Filter]],
        order_by: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[tuple]:
        params = [(f.column, _format_filter(f)) for f in filters or []]
        if order_by:
            params.append(("order", _format_order(order_by)))
        if limit is not None:
            params.append(("limit", str(limit)))
        return params

    def select(self, table, filters=None, order_by=None, limit=None):
        params = [("select", "*")] + self._query_params(filters, order_by, limit)
        return self._request("GET", table, params=params) or []

    def insert(self, table, rows):
        if not rows:
            return []
        return self._request("POST", table, json_body=rows, prefer="return=representation") or []

    def insert_if_absent(self, table, row, key_column):
        inserted = self._request(
            "POST",
            table,
            params=[("on_conflict", key_column)],
            json_body=[row],
            prefer="resolution=ignore-duplicates,return=representation",
        )
        return bool(inserted)

    def update(self, table, values, filters):
        updated = self._request(
            "PATCH",
            table,
            params=self._query_params(filters),
            json_body=values,
            prefer="return=representation",
        )
        return len(updated or [])

    def upsert(self, table, rows, key_column):
        if not rows:
            return 0
        stored = self._request(
            "POST",
            table,
            params=[("on_conflict", key_column)],
            json_body=rows,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return len(stored or [])

    def delete(self, table, filters):
        if not filters:
            raise DatastoreError(f"Refusing unfiltered delete on {table}", transient=False)
        deleted = self._request(
            "DELETE",
            table,
            params=self._query_params(filters),
            prefer="return=representation",
        )
        return len(deleted or [])

    def _rpc(self, function: str, params: Dict[str, Any]) -> Any:
        return self._request("POST", f"rpc/{function}", json_body=params)

    def create_snapshot(self, tables, batch_id=None, snapshot_type="pre_migration",
                        description=None, created_by=None):
        snapshot_id = self._rpc("create_migration_snapshot", {
            "p_batch_id": batch_id,
            "p_tables": tables,
            "p_snapshot_type": snapshot_type,
            "p_description": description,
            "p_user_id": created_by,
        })
        if not snapshot_id:
            raise DatastoreError("Snapshot function returned no id", transient=False)
        return str(snapshot_id)

    def rollback_to_snapshot(self, snapshot_id, reason, requested_by, approved_by):
        result = self._rpc("rollback_to_snapshot", {
            "p_snapshot_id": snapshot_id,
            "p_reason": reason,
            "p_user_id": requested_by,
            "p_approver_id": approved_by,
        }) or {}
        if not result.get("success", False):
            raise DatastoreError(result.get("error") or "Rollback failed", transient=False,
                                 code="ROLLBACK_FAILED")
        return result

    def claim_work_item(self, worker_id, work_types=None):
        claimed = self._rpc("claim_migration_work", {
            "p_worker_id": worker_id,
            "p_work_types": work_types,
        })
        if isinstance(claimed, list):
            return claimed[0] if claimed else None
        return claimed or None

    def calculate_quality_score(self, batch_id):
        result = self._rpc("calculate_migration_quality", {"p_batch_id": batch_id}) or {}
        if "error" in result:
            raise DatastoreError(result["error"], transient=False, code="QUALITY_FAILED")
        return result

    def validate_connection(self) -> bool:
        """Validate connection to the REST endpoint."""
        try:
            self._rate_limit_wait()
            response = self._session.get(f"{self.base_url}/rest/v1/", timeout=self.timeout)
            return response.status_code < 500
        except requests.RequestException as e:
            logger.error(f"Datastore connection validation failed: {e}")
            return False
