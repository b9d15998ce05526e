import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ✅ Import API Routes
from app.api.routes import billing, billing_webhook, health

from app.core import config
from app.core.logging_config import setup_logging
from app.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL)

    if config.RUN_MIGRATIONS:
        from app.db.migrate import run_migrations
        run_migrations()
    elif config.AUTO_CREATE_TABLES:
        from app.db.init_db import init_db
        init_db()

    # One Stripe client per process, injected via app.api.deps
    app.state.stripe_gateway = StripeGateway.from_config()
    logger.info("Community billing service started")
    yield
    logger.info("Community billing service stopped")


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Community Billing", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(health.router)


@app.get("/")
def root():
    return {"status": "Community billing API running"}
