"""Google Calendar integration router.

Connect/disconnect an organization's calendar and report sync status.
Management routes are called by the platform backend with X-Internal-Secret;
the OAuth callback is hit by the user's browser and authenticated by the
signed state.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db, verify_internal_secret
from app.core.exceptions import NotConnected, SyncError
from app.schemas.integrations import (
    CalendarAuthStartResponse,
    CalendarConnectionStatus,
    CalendarListItem,
    CalendarSelectRequest,
)
from app.services import google_calendar_connect_service

router = APIRouter(prefix="/integrations/google-calendar", tags=["Integrations"])
logger = logging.getLogger(__name__)


def _settings_redirect(result: str) -> RedirectResponse:
    base = settings.FRONTEND_URL.rstrip("/")
    return RedirectResponse(url=f"{base}/settings/calendar?google={result}", status_code=302)


# ============================================================================
# Status / Connect
# ============================================================================

@router.get(
    "/{org_id}/status",
    response_model=CalendarConnectionStatus,
    dependencies=[Depends(verify_internal_secret)],
)
def get_status(org_id: UUID, db: Session = Depends(get_db)):
    return google_calendar_connect_service.connection_status(db, org_id)


@router.post(
    "/{org_id}/start",
    response_model=CalendarAuthStartResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def start_connect(org_id: UUID):
    """Return the Google consent URL; the frontend redirects the user there."""
    if not settings.GOOGLE_CLIENT_ID:
        raise HTTPException(501, "Google OAuth not configured")
    return CalendarAuthStartResponse(
        auth_url=google_calendar_connect_service.start_auth_url(org_id)
    )


@router.get("/callback")
async def oauth_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
):
    """Handle Google OAuth callback and redirect back to the settings page."""
    if error:
        logger.info("Google Calendar OAuth declined: %s", error)
        return _settings_redirect("denied")
    if not code or not state:
        return _settings_redirect("error")

    try:
        org_id = google_calendar_connect_service.parse_oauth_state(state)
    except google_calendar_connect_service.InvalidOAuthState as exc:
        logger.warning("Google Calendar OAuth state rejected: %s", exc)
        return _settings_redirect("invalid_state")

    try:
        await google_calendar_connect_service.complete_oauth(db, org_id, code)
    except SyncError as exc:
        logger.warning("Google Calendar OAuth failed org=%s: %s", org_id, exc)
        return _settings_redirect("error")
    return _settings_redirect("connected")


# ============================================================================
# Calendars
# ============================================================================

@router.get(
    "/{org_id}/calendars",
    response_model=list[CalendarListItem],
    dependencies=[Depends(verify_internal_secret)],
)
async def list_calendars(org_id: UUID, db: Session = Depends(get_db)):
    try:
        calendars = await google_calendar_connect_service.list_writable_calendars(db, org_id)
    except NotConnected:
        raise HTTPException(409, "Google Calendar not connected")
    except SyncError as exc:
        raise HTTPException(502, str(exc))
    return [CalendarListItem(**item) for item in calendars]


@router.put(
    "/{org_id}/calendar",
    response_model=CalendarConnectionStatus,
    dependencies=[Depends(verify_internal_secret)],
)
def select_calendar(org_id: UUID, body: CalendarSelectRequest, db: Session = Depends(get_db)):
    google_calendar_connect_service.select_calendar(db, org_id, body.calendar_id)
    return google_calendar_connect_service.connection_status(db, org_id)


@router.delete(
    "/{org_id}",
    response_model=CalendarConnectionStatus,
    dependencies=[Depends(verify_internal_secret)],
)
def disconnect(org_id: UUID, db: Session = Depends(get_db)):
    google_calendar_connect_service.disconnect(db, org_id)
    return google_calendar_connect_service.connection_status(db, org_id)
