"""httpx implementation of :class:`TimelineBackend` against the reference API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ..errors import BackendError, normalize_error_message
from ..models import CalendarProvider, DateWindow, Pagination, Role
from .backend import BackendPayload, StatusValue


LOGGER = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def _isoformat(value: Any) -> str:
    return value.isoformat().replace("+00:00", "Z")


class HttpTimelineBackend:
    """Talk to the ``/api/events`` routes over HTTP.

    Failures raise :class:`BackendError`; the adapter turns them into results.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {USER_HEADER: user_id}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpTimelineBackend":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # TimelineBackend
    # ------------------------------------------------------------------
    async def fetch_live_session_entries(
        self,
        role: Role,
        window: DateWindow,
        status: Optional[StatusValue] = None,
        pagination: Optional[Pagination] = None,
    ) -> BackendPayload:
        return await self._request(
            "GET", "/api/events/live", params=self._query(role, window, status, pagination)
        )

    async def fetch_exam_entries(
        self,
        role: Role,
        window: DateWindow,
        status: Optional[StatusValue] = None,
        pagination: Optional[Pagination] = None,
    ) -> BackendPayload:
        return await self._request(
            "GET", "/api/events/exams", params=self._query(role, window, status, pagination)
        )

    async def set_reminder(self, entry_id: str, enabled: bool) -> BackendPayload:
        return await self._request(
            "PUT", f"/api/events/{entry_id}/reminder", json={"enabled": bool(enabled)}
        )

    async def get_calendar_export_link(
        self, entry_id: str, provider: CalendarProvider
    ) -> BackendPayload:
        return await self._request(
            "GET",
            f"/api/events/{entry_id}/calendar",
            params={"provider": CalendarProvider(provider).value},
        )

    async def update_lecture_status(self, entry_id: str, status: StatusValue) -> BackendPayload:
        return await self._request(
            "POST", f"/api/lectures/{entry_id}/status", json={"status": status.value}
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _query(
        role: Role,
        window: DateWindow,
        status: Optional[StatusValue],
        pagination: Optional[Pagination],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "role": Role(role).value,
            "start": _isoformat(window.start),
            "end": _isoformat(window.end),
        }
        if status is not None:
            params["status"] = status.value
        if pagination is not None:
            params["page"] = pagination.page
            params["limit"] = pagination.limit
        return params

    async def _request(self, method: str, url: str, **kwargs: Any) -> Mapping[str, Any]:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as error:
            raise BackendError(normalize_error_message(error, default="Network error")) from error

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            detail: Any = body.get("detail", body) if isinstance(body, Mapping) else response.text
            code = detail.get("code") if isinstance(detail, Mapping) else None
            message = normalize_error_message(detail, default=f"HTTP {response.status_code}")
            LOGGER.debug("%s %s failed with %s: %s", method, url, response.status_code, message)
            raise BackendError(message, code=code, status_code=response.status_code)

        if not isinstance(body, Mapping):
            raise BackendError("Backend returned a non-JSON response", status_code=response.status_code)
        return body


__all__ = ["HttpTimelineBackend", "USER_HEADER"]
