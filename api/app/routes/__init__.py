from fastapi import FastAPI

from .chat import router as chat_router
from .discovery import router as discovery_router
from .letters import router as letters_router
from .matches import router as matches_router
from .notifications import router as notifications_router
from .profile import router as profile_router
from .safety import router as safety_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(profile_router, tags=["profile"])
    app.include_router(discovery_router, tags=["discovery"])
    app.include_router(matches_router, tags=["matches"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(letters_router, tags=["letters"])
    app.include_router(notifications_router, tags=["notifications"])
    app.include_router(safety_router, tags=["safety"])


__all__ = ["include_modular_routers"]
