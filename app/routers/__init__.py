"""API routers."""

from app.routers.integrations import router as integrations_router
from app.routers.internal import router as internal_router
from app.routers.webhooks import router as webhooks_router
