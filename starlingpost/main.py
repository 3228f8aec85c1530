# starlingpost/main.py
import os
import uvicorn
from fastapi import FastAPI
from starlingpost.routers.admin_router import router as admin_router
from starlingpost.routers.user_router import router as user_router
from starlingpost.routers.post_router import router as post_router
from starlingpost.routers.platforms_router import router as platforms_router
from starlingpost.infrastructure.database import init_db, close_db
from starlingpost.infrastructure.identity import init_identity, shutdown_identity
from starlingpost.infrastructure.redis_cache import close_redis
from starlingpost.middleware.logging import RequestIdMiddleware
import structlog

SECRET_KEYS = frozenset({"access_token", "refresh_token", "code", "client_secret", "code_verifier", "id_token"})
REDACTED = "***"


def redact_secrets(logger, method_name, event_dict):
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
    )

configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="StarlingPost")

app.add_middleware(RequestIdMiddleware)

app.include_router(platforms_router)
app.include_router(post_router)
app.include_router(user_router)
app.include_router(admin_router)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup():
    await init_db()
    init_identity()
    logger.info("app_startup")


@app.on_event("shutdown")
async def on_shutdown():
    shutdown_identity()
    await close_redis()
    await close_db()
    logger.info("app_shutdown")

if __name__ == "__main__":
    uvicorn.run("starlingpost.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
