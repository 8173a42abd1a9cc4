# TokenGuard API Routers
from tokenguard.api.auth import router as auth_router
from tokenguard.api.health import router as health_router

__all__ = ["auth_router", "health_router"]
