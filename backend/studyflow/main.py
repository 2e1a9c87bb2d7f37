"""
StudyFlow API

Application factory and lifespan wiring.

Startup:
    - create tables
    - start the Redis event relay so focus timers on other instances see
      this instance's session changes

Shutdown:
    - stop the relay and close the Redis pool

Run:
    uvicorn studyflow.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studyflow.config import settings
from studyflow.db.base import init_db
from studyflow.db.redis import close_redis_pool, get_redis
from studyflow.middleware.error_handling import setup_error_handling
from studyflow.routers import focus_router, gamification_router, health_router, review_router
from studyflow.services.learning.events import EventBus, RedisEventRelay
from studyflow.services.learning.points import PointsEngine

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    relay = None
    if settings.EVENT_RELAY_ENABLED:
        try:
            relay = RedisEventRelay(app.state.bus, await get_redis())
            await relay.start()
            logger.info(f"Event relay started on channel {relay.channel}")
        except Exception as e:
            logger.warning(f"Event relay unavailable, running single-instance: {e}")
            relay = None
    app.state.relay = relay

    yield

    if relay is not None:
        await relay.stop()
    await close_redis_pool()


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        use_lifespan: Run database and Redis startup; tests pass False and
            override the dependencies instead
    """
    app = FastAPI(title=f"{settings.APP_NAME} API", lifespan=lifespan if use_lifespan else None)

    # Process-wide state shared by every request
    app.state.bus = EventBus()
    app.state.points_engine = PointsEngine()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handling(app, debug=settings.DEBUG)

    app.include_router(health_router.router)
    app.include_router(review_router.router)
    app.include_router(focus_router.router)
    app.include_router(gamification_router.router)

    return app


app = create_app()
