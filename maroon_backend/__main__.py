"""
Lance l'API checkout en local: `python -m maroon_backend`.

PORT (8000 par défaut), UVICORN_RELOAD=1 pour le rechargement auto, LOG_LEVEL pour uvicorn.
"""
import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "maroon_backend.asgi:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("UVICORN_RELOAD", "").lower() in ("1", "true", "yes"),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


if __name__ == "__main__":
    main()
