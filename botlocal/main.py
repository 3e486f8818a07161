import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from botlocal import models  # noqa: F401  (registers tables on Base.metadata)
from botlocal.config import settings
from botlocal.database import Base, engine
from botlocal.dependencies import build_container
from botlocal.logging_config import get_logger, setup_logging
from botlocal.routers import billing_webhook, telegram_webhook, whatsapp_webhook

setup_logging(settings.log_level, json_output=not settings.debug)
logger = get_logger("main")

app = FastAPI(
    title="BotLocal API",
    description="Inbound chat and billing webhooks for BotLocal business assistants",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(telegram_webhook.router)
app.include_router(whatsapp_webhook.router)
app.include_router(billing_webhook.router)

app.state.container = build_container()


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.worker_enabled


@app.on_event("startup")
async def startup() -> None:
    Base.metadata.create_all(bind=engine)
    if _is_worker_enabled():
        app.state.container.worker_pool.start()


@app.on_event("shutdown")
async def shutdown() -> None:
    await app.state.container.worker_pool.stop()


@app.get("/health")
async def health():
    return {"status": "ok", "workers": app.state.container.worker_pool.stats()}
