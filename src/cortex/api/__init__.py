"""FastAPI routes for Cortex."""

from cortex.api.auth import Auth, OptionalAuth
from cortex.api.routes import router

__all__ = ["Auth", "OptionalAuth", "router"]
