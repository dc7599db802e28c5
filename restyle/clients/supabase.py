from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from restyle.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)

_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_column(column: str) -> str:
    """Double-quote column names PostgREST would otherwise misparse."""

    if column == "*" or _PLAIN_IDENTIFIER.match(column):
        return column
    return '"' + column.replace('"', '\\"') + '"'


@dataclass(frozen=True)
class Filter:
    """A single PostgREST row filter. Filters passed together are ANDed."""

    column: str
    op: str
    value: Any = None

    @classmethod
    def eq(cls, column: str, value: Any) -> "Filter":
        return cls(column, "eq", value)

    @classmethod
    def in_(cls, column: str, values: Sequence[Any]) -> "Filter":
        return cls(column, "in", tuple(values))

    @classmethod
    def ilike(cls, column: str, pattern: str) -> "Filter":
        return cls(column, "ilike", pattern)

    @classmethod
    def gte(cls, column: str, value: Any) -> "Filter":
        return cls(column, "gte", value)

    @classmethod
    def lt(cls, column: str, value: Any) -> "Filter":
        return cls(column, "lt", value)

    @classmethod
    def not_null(cls, column: str) -> "Filter":
        return cls(column, "not_null")

    def to_param(self) -> Tuple[str, str]:
        key = quote_column(self.column)
        if self.op == "in":
            values = ",".join('"' + str(v).replace('"', '\\"') + '"' for v in self.value)
            return key, f"in.({values})"
        if self.op == "not_null":
            return key, "not.is.null"
        return key, f"{self.op}.{self.value}"


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True
    nulls_first: Optional[bool] = None

    def to_param(self) -> str:
        parts = [quote_column(self.column), "asc" if self.ascending else "desc"]
        if self.nulls_first is not None:
            parts.append("nullsfirst" if self.nulls_first else "nullslast")
        return ".".join(parts)


@dataclass
class SelectResult:
    rows: List[Dict[str, Any]]
    count: Optional[int] = None


def _parse_content_range(header: str | None) -> Optional[int]:
    # "0-24/3573" or "*/0"
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class SupabaseClient:
    """Async client for the Supabase PostgREST endpoint, authenticated with the service-role key."""

    def __init__(
        self,
        base_url: str | None,
        *,
        service_role_key: str | None = None,
        timeout: float = 10.0,
        use_mock_data: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/") if base_url else None
        self._timeout = timeout
        self._transport = transport
        self.use_mock_data = use_mock_data or not self._base_url
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if service_role_key:
            self._headers.update({
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
            })
        self._client: Optional[httpx.AsyncClient] = None
        if not self.use_mock_data and self._base_url:
            self._client = self._build_client()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self._base_url}/rest/v1",
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.use_mock_data or not self._base_url:
            raise RuntimeError("HTTP client requested while running in mock mode")
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: List[Tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        if self.use_mock_data:
            raise RuntimeError("Real HTTP call requested while mock mode is enabled")
        client = await self._ensure_client()
        headers = {"Prefer": prefer} if prefer else None
        try:
            logger.debug("Supabase %s %s params=%s", method, table, params)
            response = await client.request(
                method, f"/{quote(table)}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            logger.exception("Supabase returned error %s", exc.response.status_code)
            raise DownstreamServiceError(
                _error_message(exc.response),
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach Supabase: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach Supabase", status_code=None, cause=exc
            ) from exc

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        select = ",".join(quote_column(c) for c in columns) if columns else "*"
        params: List[Tuple[str, str]] = [("select", select)]
        params.extend(f.to_param() for f in filters)
        if order:
            params.append(("order", ",".join(o.to_param() for o in order)))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        response = await self._request(
            "GET", table, params=params, prefer="count=exact" if count else None
        )
        total = _parse_content_range(response.headers.get("content-range")) if count else None
        return SelectResult(rows=response.json(), count=total)

    async def insert(self, table: str, rows: Sequence[Dict[str, Any]]) -> None:
        await self._request("POST", table, json=list(rows), prefer="return=minimal")

    async def update(
        self, table: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        params = [f.to_param() for f in filters]
        response = await self._request(
            "PATCH", table, params=params, json=values, prefer="return=representation"
        )
        return response.json()

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        params = [f.to_param() for f in filters]
        await self._request("DELETE", table, params=params)

    async def simulate_latency(self) -> None:
        """Allow services to await for latency even when mocking responses."""

        await asyncio.sleep(0)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Supabase returned an error response"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return "Supabase returned an error response"
