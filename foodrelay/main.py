# foodrelay/main.py
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foodrelay.core.config import settings
from foodrelay.core.errors import install_error_handlers
from foodrelay.core.log import configure_logging
from foodrelay.deps import get_mailer, get_matcher, get_repo
from foodrelay.middleware.audit import AuditMiddleware
from foodrelay.routers import deliveries as deliveries_router
from foodrelay.routers import food_items as food_items_router
from foodrelay.routers import maps as maps_router
from foodrelay.routers.accounts import donors_router, ngos_router
from foodrelay.services.outbox import run_outbox_loop

configure_logging(settings.log_level)
log = logging.getLogger(__name__)


def _resolve(app: FastAPI, dep):
    # honour dependency_overrides outside of a request, too
    return app.dependency_overrides.get(dep, dep)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    repo = _resolve(app, get_repo)
    await repo.ensure_indexes()

    worker = None
    if settings.outbox_enabled:
        worker = asyncio.create_task(
            run_outbox_loop(repo, _resolve(app, get_mailer), settings.outbox_poll_seconds),
            name="outbox",
        )
    log.info("FoodRelay started (store=%s)", "mongo" if settings.use_mongo else "memory")

    yield

    if worker:
        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker
    await _resolve(app, get_matcher).shutdown()
    await repo.close()


app = FastAPI(lifespan=lifespan, title="FoodRelay API")

install_error_handlers(app)

app.add_middleware(AuditMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(donors_router)        # /donors
app.include_router(ngos_router)          # /ngos
app.include_router(food_items_router.router)
app.include_router(deliveries_router.router)
app.include_router(maps_router.router)

# Health
@app.get("/health")
def health():
    return {"ok": True}
