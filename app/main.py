"""ASGI entry point for the Chatwave signalling service."""

import logging.config

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from chatwave import __version__
from chatwave.realtime.managers import get_hub, shutdown_realtime, startup_realtime


def build_logging_config(settings: Settings) -> dict:
    level = "DEBUG" if settings.debug else "INFO"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "root": {
            "handlers": ["default"],
            "level": "INFO",
        },
        "loggers": {
            # Call lifecycle and broker outages are the operationally relevant streams.
            "chatwave": {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
        },
    }


settings = get_settings()

logging.config.dictConfig(build_logging_config(settings))

app = FastAPI(title=settings.app_name, version=__version__, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)


@app.get("/health", tags=["system"])
def health_check() -> dict[str, object]:
    """Liveness probe with a few cheap counters."""
    hub = get_hub()
    return {
        "status": "ok",
        "environment": settings.environment,
        "node": hub.node_id,
        "connections": len(hub.registry),
        "calls": len(hub.sessions),
    }


@app.on_event("startup")
async def _startup() -> None:
    await startup_realtime()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
app.include_router(metrics_router)
