"""Async HTTP client for the CouchDB / Cloudant REST API."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from couchsnap.config.models import RetryConfig, ServerConfig

logger = structlog.get_logger()

_TRANSIENT_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class CouchError(Exception):
    """Raised when a CouchDB API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying: transport errors, 408/429 and 5xx."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _TRANSIENT_STATUS
    return False


def db_path(database: str) -> str:
    """URL path for a database; '/' in names must be escaped."""
    return "/" + quote(database, safe="")


class CouchClient:
    """Thin async wrapper around the CouchDB REST API with retries."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ServerConfig()
        self._retry = retry or RetryConfig()
        headers = {"Accept": "application/json"}
        auth: httpx.BasicAuth | None = None
        if self._config.auth_token is not None:
            headers["Authorization"] = (
                f"Bearer {self._config.auth_token.get_secret_value()}"
            )
        elif self._config.username is not None and self._config.password is not None:
            auth = httpx.BasicAuth(
                self._config.username, self._config.password.get_secret_value()
            )
        self._client = httpx.AsyncClient(
            base_url=self._config.url,
            headers=headers,
            auth=auth,
            timeout=self._config.timeout_seconds,
            transport=transport,
        )

    @property
    def url(self) -> str:
        return self._config.url

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CouchClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry.initial_wait_seconds,
                exp_base=self._retry.multiplier,
                max=self._retry.max_wait_seconds,
            ),
            reraise=True,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    resp = await self._client.request(method, path, **kwargs)
                    resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise CouchError(
                f"{method} {path} failed: {status} {exc.response.text}",
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise CouchError(f"{method} {path} failed: {exc}") from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise CouchError(f"{method} {path} returned invalid JSON") from exc

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "couch.request_retry",
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    # -- Server / database -----------------------------------------------------

    async def server_info(self) -> dict[str, Any]:
        """GET / (welcome document with the server version)."""
        return await self._request("GET", "/")  # type: ignore[no-any-return]

    async def database_info(self, database: str) -> dict[str, Any]:
        """GET /{db} (document counts, update_seq)."""
        info: dict[str, Any] = await self._request("GET", db_path(database))
        return info

    # -- Changes ---------------------------------------------------------------

    async def post_changes(
        self,
        database: str,
        *,
        since: str,
        include_docs: bool = True,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """Fetch one page of the normal (non-continuous) changes feed."""
        params: dict[str, Any] = {
            "since": since,
            "include_docs": "true" if include_docs else "false",
        }
        if limit is not None:
            params["limit"] = limit
        data = await self._request(
            "POST", f"{db_path(database)}/_changes", params=params, json={}
        )
        if not isinstance(data, dict):
            msg = f"unexpected _changes response for '{database}'"
            raise CouchError(msg)
        logger.debug(
            "couch.changes_page",
            db=database,
            rows=len(data.get("results", [])),
            pending=data.get("pending"),
        )
        return data  # type: ignore[no-any-return]
