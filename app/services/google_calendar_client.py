"""Google Calendar REST client (events and calendar list).

Thin httpx wrappers. Every call uses the configured provider timeout and
no retries; failures raise AuthExpired (401) or UpstreamUnavailable so the
sync services can record them.
"""

import logging
from typing import Any, TypedDict
from urllib.parse import quote

import httpx

from app.core.config import settings
from app.core.exceptions import AuthExpired, UpstreamUnavailable

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


class EventListing(TypedDict):
    """Raw Google event resources plus whether the listing hit the cap."""
    items: list[dict[str, Any]]
    truncated: bool


def _events_url(calendar_id: str, event_id: str | None = None) -> str:
    url = f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events"
    if event_id:
        url = f"{url}/{quote(event_id, safe='')}"
    return url


def _headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS)


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code == 401:
        raise AuthExpired(f"Google rejected access token during {action}")
    if response.status_code >= 400:
        detail = ""
        try:
            detail = response.json().get("error", {}).get("message", "")
        except ValueError:
            detail = response.text[:200]
        raise UpstreamUnavailable(
            f"Google Calendar {action} failed ({response.status_code}): {detail}".rstrip(": "),
            status_code=response.status_code,
        )


async def _send(method: str, url: str, access_token: str, action: str, **kwargs) -> httpx.Response:
    try:
        async with _client() as client:
            response = await client.request(method, url, headers=_headers(access_token), **kwargs)
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable(f"Google Calendar {action} failed: {exc}") from exc
    return response


async def insert_event(access_token: str, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Create an event; returns the created resource (with id)."""
    response = await _send("POST", _events_url(calendar_id), access_token, "insert", json=body)
    _raise_for_status(response, "insert")
    return response.json()


async def patch_event(
    access_token: str, calendar_id: str, event_id: str, body: dict[str, Any]
) -> dict[str, Any]:
    response = await _send(
        "PATCH", _events_url(calendar_id, event_id), access_token, "patch", json=body
    )
    _raise_for_status(response, "patch")
    return response.json()


async def delete_event(access_token: str, calendar_id: str, event_id: str) -> bool:
    """
    Delete an event.

    Returns True when the event is gone (including 404/410 = already deleted).
    """
    response = await _send("DELETE", _events_url(calendar_id, event_id), access_token, "delete")
    if response.status_code in (404, 410):
        return True
    _raise_for_status(response, "delete")
    return True


async def list_events(
    access_token: str,
    calendar_id: str,
    time_min: str,
    time_max: str,
    max_results_per_page: int = 250,
    max_total_results: int | None = None,
) -> EventListing:
    """
    List events in a window.

    Features:
    - singleEvents=true: Expands recurring events into individual instances
    - Handles pagination via nextPageToken
    - Caps total results to prevent runaway loops (truncated=True when hit)
    """
    cap = max_total_results or settings.CALENDAR_PULL_MAX_EVENTS
    items: list[dict[str, Any]] = []
    page_token: str | None = None
    truncated = False

    try:
        async with _client() as client:
            while True:
                params = {
                    "timeMin": time_min,
                    "timeMax": time_max,
                    "singleEvents": "true",
                    "orderBy": "startTime",
                    "maxResults": str(min(max_results_per_page, cap - len(items))),
                }
                if page_token:
                    params["pageToken"] = page_token

                response = await client.get(
                    _events_url(calendar_id),
                    headers=_headers(access_token),
                    params=params,
                )
                _raise_for_status(response, "list")

                data = response.json()
                items.extend(data.get("items", []))
                page_token = data.get("nextPageToken")
                if not page_token:
                    break
                if len(items) >= cap:
                    truncated = True
                    logger.warning(
                        "Calendar listing truncated at %s events for %s window", cap, time_min
                    )
                    break
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable(f"Google Calendar list failed: {exc}") from exc

    return EventListing(items=items[:cap], truncated=truncated)


async def list_calendars(access_token: str) -> list[dict[str, Any]]:
    """List calendars the account can write to."""
    response = await _send(
        "GET",
        f"{CALENDAR_API_BASE}/users/me/calendarList",
        access_token,
        "calendar list",
        params={"minAccessRole": "writer"},
    )
    _raise_for_status(response, "calendar list")
    return [
        {
            "id": item.get("id", ""),
            "summary": item.get("summaryOverride") or item.get("summary") or item.get("id", ""),
            "primary": bool(item.get("primary")),
        }
        for item in response.json().get("items", [])
        if item.get("id")
    ]
