"""Google Calendar provider.

Talks to the Calendar v3 REST API with ``httpx`` and OAuth refresh-token
credentials. Recurring series are expanded server-side (``singleEvents``),
and blockers are tagged through a private extended property so they survive
round-trips through other clients untouched.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from blocksync.errors import ProviderAuthError, ProviderError, ProviderRequestError
from blocksync.models import BlockerTemplate, BusyState, CalendarEvent, SyncWindow
from blocksync.providers.base import CORRELATION_TAG_KEY, CalendarProvider

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

# Retry on 429 Too Many Requests and 503 Service Unavailable with exponential backoff.
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0

LIST_PAGE_SIZE = 250


class GoogleOAuthCredentials(BaseModel):
    """OAuth client credentials required for refresh-token exchange."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)

    @field_validator("client_id", "client_secret", "refresh_token")
    @classmethod
    def _normalize_non_empty(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return normalized

    @classmethod
    def from_json(cls, raw_value: str) -> GoogleOAuthCredentials:
        """Parse credentials from a JSON string.

        Accepts the flat shape as well as the ``installed`` / ``web`` shapes
        of downloaded OAuth client files.
        """
        try:
            payload = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise ProviderAuthError(f"Credential JSON must be valid JSON: {exc.msg}") from exc

        if not isinstance(payload, dict):
            raise ProviderAuthError("Credential JSON must decode to a JSON object")

        credential_data = {
            key: _extract_credential_value(payload, key)
            for key in ("client_id", "client_secret", "refresh_token")
        }

        missing = sorted(key for key, value in credential_data.items() if value is None)
        if missing:
            raise ProviderAuthError(
                f"Credential JSON is missing required field(s): {', '.join(missing)}"
            )

        invalid = sorted(
            key
            for key, value in credential_data.items()
            if not isinstance(value, str) or not value.strip()
        )
        if invalid:
            raise ProviderAuthError(
                f"Credential JSON must contain non-empty string field(s): {', '.join(invalid)}"
            )

        return cls(**{key: str(value) for key, value in credential_data.items()})


class _GoogleOAuthClient:
    """Refresh-token OAuth helper with lightweight access-token caching."""

    def __init__(
        self,
        credentials: GoogleOAuthCredentials,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._access_token: str | None = None
        self._access_token_expires_at: datetime | None = None
        self._refresh_lock = asyncio.Lock()

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if not force_refresh and self._token_is_fresh():
            assert self._access_token is not None
            return self._access_token

        async with self._refresh_lock:
            if not force_refresh and self._token_is_fresh():
                assert self._access_token is not None
                return self._access_token

            await self._refresh_access_token()
            assert self._access_token is not None
            return self._access_token

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._access_token_expires_at is None:
            return False
        return datetime.now(UTC) < self._access_token_expires_at

    async def _refresh_access_token(self) -> None:
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._credentials.client_id,
                    "client_secret": self._credentials.client_secret,
                    "refresh_token": self._credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ProviderAuthError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderAuthError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {_safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderAuthError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise ProviderAuthError(
                "Google OAuth token response is missing a non-empty access_token"
            )

        expires_in_raw = payload.get("expires_in") if isinstance(payload, dict) else None
        expires_in_seconds = _coerce_expires_in_seconds(expires_in_raw)
        # Refresh early to avoid edge-of-expiration failures.
        refresh_ttl_seconds = max(expires_in_seconds - 60, 30)

        self._access_token = access_token.strip()
        self._access_token_expires_at = datetime.now(UTC) + timedelta(seconds=refresh_ttl_seconds)


def _extract_credential_value(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]

    for nested_key in ("installed", "web"):
        nested = payload.get(nested_key)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return 3600
    if isinstance(value, int | float):
        return int(value) if value > 0 else 3600
    return 3600


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _coerce_zoneinfo(timezone: str) -> ZoneInfo | Any:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _parse_google_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str,
) -> tuple[datetime, bool]:
    """Return the boundary as an aware datetime plus whether it was date-only."""
    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return _parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value)
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc

        timezone = _normalize_optional_text(payload.get("timeZone")) or fallback_timezone
        parsed = datetime(
            parsed_date.year,
            parsed_date.month,
            parsed_date.day,
            tzinfo=_coerce_zoneinfo(timezone),
        )
        return parsed, True

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _extract_correlation_tag(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    private_payload = payload.get("private")
    if not isinstance(private_payload, dict):
        return None
    return _normalize_optional_text(private_payload.get(CORRELATION_TAG_KEY))


def _extract_organizer(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    return _normalize_optional_text(payload.get("email"))


def _self_declined(attendees: Any) -> bool:
    if not isinstance(attendees, list):
        return False
    for entry in attendees:
        if isinstance(entry, dict) and entry.get("self") is True:
            return entry.get("responseStatus") == "declined"
    return False


def _google_event_to_calendar_event(
    payload: dict[str, Any],
    *,
    account: str,
    fallback_timezone: str,
) -> CalendarEvent | None:
    status_raw = payload.get("status")
    if isinstance(status_raw, str) and status_raw.lower() == "cancelled":
        return None

    event_id = _normalize_optional_text(payload.get("id"))
    if event_id is None:
        raise ValueError("Google Calendar event payload is missing a non-empty id")

    start_payload = payload.get("start")
    end_payload = payload.get("end")
    if not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
        raise ValueError(f"Google Calendar event '{event_id}' is missing start/end payloads")

    start_at, start_is_date = _parse_google_event_boundary(
        start_payload, fallback_timezone=fallback_timezone
    )
    end_at, _ = _parse_google_event_boundary(end_payload, fallback_timezone=fallback_timezone)

    transparent = payload.get("transparency") == "transparent"
    busy_state = (
        BusyState.free
        if transparent or _self_declined(payload.get("attendees"))
        else BusyState.busy
    )

    return CalendarEvent(
        event_id=event_id,
        source_id=_normalize_optional_text(payload.get("recurringEventId")) or event_id,
        account=account,
        start_at=start_at,
        end_at=end_at,
        subject=_normalize_optional_text(payload.get("summary")) or "",
        all_day=start_is_date,
        busy_state=busy_state,
        location=_normalize_optional_text(payload.get("location")),
        organizer=_extract_organizer(payload.get("organizer")),
        correlation_tag=_extract_correlation_tag(payload.get("extendedProperties")),
    )


def _build_blocker_body(template: BlockerTemplate) -> dict[str, Any]:
    """Translate a BlockerTemplate into a Google Calendar API event body."""
    return {
        "summary": template.subject,
        "start": {"dateTime": _google_rfc3339(template.start_at)},
        "end": {"dateTime": _google_rfc3339(template.end_at)},
        "status": "confirmed",
        "transparency": "opaque" if template.busy_state is BusyState.busy else "transparent",
        "visibility": "private",
        "reminders": {"useDefault": template.reminder, "overrides": []},
        "extendedProperties": {"private": {CORRELATION_TAG_KEY: template.correlation_tag}},
    }


class GoogleCalendarProvider(CalendarProvider):
    """Google provider bound to one calendar of one account."""

    def __init__(
        self,
        *,
        calendar_id: str,
        credentials: GoogleOAuthCredentials,
        timezone: str = "UTC",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._calendar_id = calendar_id
        self._timezone = timezone
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self._oauth = _GoogleOAuthClient(credentials, self._http_client)

    @property
    def name(self) -> str:
        return "google"

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self._calendar_id, safe='')}/events"

    async def _request_google_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_bearer(
            method=method,
            path=path,
            params=params,
            json_body=json_body,
        )

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderRequestError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )

        if response.status_code == 204:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderAuthError(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc

        if not isinstance(payload, dict):
            raise ProviderAuthError("Google Calendar API returned an unexpected JSON payload shape")
        return payload

    async def _request_with_bearer(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{normalized_path}"

        response = await self._request_once(
            method=method, url=url, params=params, json_body=json_body, force_refresh=False
        )

        if response.status_code == 401:
            response = await self._request_once(
                method=method, url=url, params=params, json_body=json_body, force_refresh=True
            )

        # Rate-limit retry: honour Retry-After header on 429, exponential backoff on 503.
        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(
                method=method, url=url, params=params, json_body=json_body, force_refresh=False
            )
            retry += 1

        return response

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._oauth.get_access_token(force_refresh=force_refresh)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise ProviderAuthError(f"Google Calendar request failed: {exc}") from exc

    async def list_events(
        self,
        *,
        account: str,
        window: SyncWindow | None,
    ) -> list[CalendarEvent]:
        """List expanded occurrences, following ``nextPageToken``.

        With no *window* there is no ``timeMin``/``timeMax``, so Google returns
        every occurrence it will expand, past and future. A long-lived
        calendar can take many pages; set ``reset_days`` to bound reset passes.
        """
        params: dict[str, Any] = {
            "singleEvents": True,
            "showDeleted": False,
            "orderBy": "startTime",
            "maxResults": LIST_PAGE_SIZE,
        }
        if window is not None:
            params["timeMin"] = _google_rfc3339(window.start)
            # timeMax bounds the start time exclusively; the window end is inclusive.
            params["timeMax"] = _google_rfc3339(window.end + timedelta(seconds=1))

        events: list[CalendarEvent] = []
        page_token: str | None = None
        while True:
            page_params = dict(params)
            if page_token is not None:
                page_params["pageToken"] = page_token
            try:
                payload = await self._request_google_json(
                    "GET", self._events_path, params=page_params
                )
            except ProviderError as exc:
                exc.account = account
                exc.operation = "list_events"
                raise

            items = payload.get("items")
            if not isinstance(items, list):
                raise ProviderAuthError(
                    "Google Calendar list_events response missing items array",
                    account=account,
                    operation="list_events",
                )

            for item in items:
                if not isinstance(item, dict):
                    continue
                try:
                    event = _google_event_to_calendar_event(
                        item, account=account, fallback_timezone=self._timezone
                    )
                except ValueError as exc:
                    # One unreadable occurrence must not sink the whole pass.
                    logger.warning("Skipping unreadable event in %s: %s", account, exc)
                    continue
                if event is not None:
                    events.append(event)

            page_token = _normalize_optional_text(payload.get("nextPageToken"))
            if page_token is None:
                return events

    async def create_blocker(
        self,
        *,
        account: str,
        template: BlockerTemplate,
    ) -> CalendarEvent:
        try:
            response_payload = await self._request_google_json(
                "POST",
                self._events_path,
                params={"sendUpdates": "none"},
                json_body=_build_blocker_body(template),
            )
            event = _google_event_to_calendar_event(
                response_payload, account=account, fallback_timezone=self._timezone
            )
        except ProviderError as exc:
            exc.account = account
            exc.operation = "create_blocker"
            raise
        except ValueError as exc:
            raise ProviderAuthError(
                f"Google Calendar returned an unreadable event after create: {exc}",
                account=account,
                operation="create_blocker",
            ) from exc

        if event is None:
            raise ProviderRequestError(
                status_code=200,
                message="Google Calendar returned a cancelled event after create",
                account=account,
                operation="create_blocker",
            )
        return event

    async def delete_event(self, *, account: str, event: CalendarEvent) -> None:
        """Delete an event occurrence without notifying attendees.

        404 and 410 mean the event is already gone and count as success.
        """
        encoded_event_id = quote(event.event_id.strip(), safe="")
        try:
            response = await self._request_with_bearer(
                method="DELETE",
                path=f"{self._events_path}/{encoded_event_id}",
                params={"sendUpdates": "none"},
            )
        except ProviderError as exc:
            exc.account = account
            exc.operation = "delete_event"
            raise

        if response.status_code in (404, 410):
            logger.debug(
                "delete_event: event '%s' already gone; treating as success", event.event_id
            )
            return

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderRequestError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
                account=account,
                operation="delete_event",
            )

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
