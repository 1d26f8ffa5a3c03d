"""
HTTP client for the external attendance source.

All requests carry the X-API-Key header. Transport errors and non-2xx responses
surface as ExternalSourceError; callers decide whether that is fatal.
"""
import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from timeledger.core.sync.schemas import ExternalPeriod, ExternalRow, ExternalWorker
from timeledger.settings import get_settings

logger = logging.getLogger(__name__)

MAX_PAGES = 200


class ExternalSourceError(Exception):
    pass


class AttendanceSource(Protocol):
    async def get_current_period(self) -> ExternalPeriod | None: ...

    async def get_rows(self, worker_id: str, period_id: str) -> list[ExternalRow]: ...


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class ExternalAttendanceClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"X-API-Key": api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "ExternalAttendanceClient":
        settings = get_settings()
        return cls(
            settings.EXTERNAL_SOURCE_URL,
            settings.EXTERNAL_SOURCE_API_KEY,
            settings.EXTERNAL_SOURCE_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ExternalAttendanceClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _request(self, method: str, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._http.request(method, path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("External source %s %s -> %s", method, path, exc.response.status_code)
            raise ExternalSourceError(
                f"External source returned {exc.response.status_code} for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("External source %s %s transport error: %s", method, path, exc)
            raise ExternalSourceError(f"External source unavailable: {exc}") from exc
        if not response.content:
            return None
        return response.json()

    async def get_current_period(self) -> ExternalPeriod | None:
        body = _unwrap(await self._request("GET", "/api/data/periods/current"))
        if not body:
            return None
        try:
            return ExternalPeriod.model_validate(body)
        except ValidationError as exc:
            raise ExternalSourceError(f"Malformed period payload: {exc}") from exc

    async def list_periods(self) -> list[ExternalPeriod]:
        body = _unwrap(await self._request("GET", "/api/data/periods")) or []
        return [ExternalPeriod.model_validate(p) for p in body]

    async def list_workers(self) -> list[ExternalWorker]:
        body = _unwrap(await self._request("GET", "/api/data/workers")) or []
        return [ExternalWorker.model_validate(w) for w in body]

    async def get_rows(self, worker_id: str, period_id: str) -> list[ExternalRow]:
        """Every row for one worker in one period, following pagination."""
        rows: list[ExternalRow] = []
        page = 1
        while page <= MAX_PAGES:
            body = await self._request(
                "GET", "/api/data/timesheets",
                params={"workerId": worker_id, "periodId": period_id, "page": page},
            )
            if isinstance(body, list):
                items, last_page = body, page
            else:
                body = body or {}
                items = body.get("data") or []
                last_page = (body.get("meta") or {}).get("lastPage") or page
            try:
                rows.extend(ExternalRow.model_validate(item) for item in items)
            except ValidationError as exc:
                raise ExternalSourceError(f"Malformed attendance row: {exc}") from exc
            if page >= last_page:
                break
            page += 1
        return rows

    async def trigger_refresh(self) -> dict:
        """Ask the external system to run its own scheduler now."""
        return await self._request("POST", "/api/system/scheduler/run-now") or {}
