"""
Entrypoint ASGI pour les process managers (ex: `uvicorn maroon_backend.asgi:app --workers 1`).

Les sessions de checkout vivent en mémoire du process: un seul worker par instance,
ou une affinité de session côté load balancer.
"""
from maroon_backend.app import app

__all__ = ["app"]
