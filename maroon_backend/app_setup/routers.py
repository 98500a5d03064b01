"""
Registre central des routers.
- API v1: checkout (sessions + funding)
- Health: health_router
"""
from fastapi import FastAPI
from maroon_backend.checkout import views as checkout_views
from maroon_backend.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(checkout_views.router)
    app.include_router(checkout_views.funding_router)
    # Health & monitoring
    app.include_router(health_router)
