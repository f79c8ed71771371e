"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter) lives here; every sub-router imports what it
needs from this package.
"""

import os

from fastapi import APIRouter
from slowapi import Limiter
from slowapi.util import get_remote_address

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from picklehub.api.routes.health import router as health_router  # noqa: E402
from picklehub.api.routes.auth import router as auth_router  # noqa: E402
from picklehub.api.routes.users import router as users_router  # noqa: E402
from picklehub.api.routes.teams import router as teams_router  # noqa: E402
from picklehub.api.routes.team_events import router as team_events_router  # noqa: E402
from picklehub.api.routes.events import router as events_router  # noqa: E402
from picklehub.api.routes.chat import router as chat_router  # noqa: E402
from picklehub.api.routes.notifications import router as notifications_router  # noqa: E402
from picklehub.api.routes.uploads import router as uploads_router  # noqa: E402
from picklehub.api.routes.stats import router as stats_router  # noqa: E402

router = APIRouter()
router.include_router(health_router)
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(teams_router)
router.include_router(team_events_router)
router.include_router(events_router)
router.include_router(chat_router)
router.include_router(notifications_router)
router.include_router(uploads_router)
router.include_router(stats_router)
