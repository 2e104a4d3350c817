from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, Iterator, List, Optional

import requests

from metrics import metrics

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A backend call failed: network error, HTTP error status, or bad body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def in_filter(values: Iterable[str]) -> str:
    """Build a column-in-list predicate value, e.g. in.("a","b")."""
    quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


def eq_filter(value: Any) -> str:
    return f"eq.{value}"


def iter_batches(values: List[str], batch_size: int) -> Iterator[List[str]]:
    """Split ids into IN-clause sized batches."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    for start in range(0, len(values), batch_size):
        yield values[start:start + batch_size]


class BackendClient:
    """
    Thin client over the hosted database's REST and auth endpoints.

    Calls are not retried: a failure is raised once as BackendError and the
    caller decides whether to degrade or surface it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: int = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "Content-Type": "application/json",
            }
        )

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.base_url}/auth/v1"

    def _request(
        self,
        method: str,
        url: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Issue one request and decode its JSON body (None for empty bodies)."""
        start_time = time.time()
        status = "error"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json() if response.content else None
            status = "success"
            return body

        except requests.HTTPError as e:
            message = self._error_message(e.response) or str(e)
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"HTTP error from backend ({endpoint}): {message}")
            raise BackendError(message, status_code=status_code) from e
        except requests.Timeout as e:
            logger.error(f"Timeout calling backend ({endpoint}): {e}")
            raise BackendError(f"Timeout calling {endpoint}") from e
        except requests.RequestException as e:
            logger.error(f"Request exception calling backend ({endpoint}): {e}")
            raise BackendError(str(e)) from e
        except ValueError as e:
            logger.error(f"Undecodable response from backend ({endpoint}): {e}")
            raise BackendError(f"Invalid JSON from {endpoint}") from e
        finally:
            metrics.record_backend_request(endpoint, status, time.time() - start_time)

    @staticmethod
    def _error_message(response: Optional[requests.Response]) -> Optional[str]:
        if response is None:
            return None
        try:
            body = response.json()
        except ValueError:
            return response.text or None
        if isinstance(body, dict):
            return body.get("message") or body.get("msg") or body.get("error")
        return None

    # =========================================================================
    # READS
    # =========================================================================

    def select(
        self,
        table: str,
        columns: str,
        filters: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch rows from a table.

        Args:
            table: Table name
            columns: Comma separated column list
            filters: Column to predicate mapping (see in_filter / eq_filter)
            order: Order clause, e.g. "created_at.desc,id.asc"
            offset: First row of the range
            limit: Maximum rows returned

        Returns:
            List of row dictionaries
        """
        params: Dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if offset is not None:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit

        data = self._request("GET", f"{self.rest_url}/{table}", table, params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError(f"Unexpected response shape from {table}")
        return data

    def get_user(self, access_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Resolve the user behind an access token; None when unauthenticated."""
        token = access_token or self.access_token
        if not token:
            return None
        try:
            user = self._request(
                "GET",
                f"{self.auth_url}/user",
                "auth_user",
                headers={"Authorization": f"Bearer {token}"},
            )
        except BackendError as e:
            if e.status_code in (401, 403):
                logger.warning("Access token rejected by auth service")
                return None
            raise
        if not user or not user.get("id"):
            return None
        return user

    # =========================================================================
    # WRITES
    # =========================================================================

    def update(
        self,
        table: str,
        filters: Dict[str, str],
        values: Dict[str, Any],
        access_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Update rows matching the filters and return the rows actually changed.

        With an access_token the write runs as that user, so row-level
        permissions apply to the caller rather than to the client's key.
        """
        headers = {"Prefer": "return=representation"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        data = self._request(
            "PATCH",
            f"{self.rest_url}/{table}",
            table,
            params=filters,
            json_body=values,
            headers=headers,
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError(f"Unexpected response shape from {table}")
        return data

    def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """Invoke a stored procedure."""
        return self._request(
            "POST", f"{self.rest_url}/rpc/{function}", f"rpc_{function}", json_body=params
        )

    def __enter__(self) -> "BackendClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit with session cleanup."""
        self.close()

    def close(self) -> None:
        """Close the requests session."""
        if hasattr(self, "session") and self.session:
            try:
                self.session.close()
            except Exception as e:
                logger.warning(f"Error closing session: {e}")
