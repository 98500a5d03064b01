"""
Gestionnaires d’exceptions de l’API.
- HTTPException: body JSON FastAPI standard {"detail": ...}.
- CheckoutError non traduite par une vue: même format, avec le code stable et l'indication
  « retryable » pour le front.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from maroon_backend.checkout.errors import CheckoutError

logger = logging.getLogger(__name__)


def checkout_error_detail(exc: CheckoutError) -> dict:
    return {"code": exc.code, "message": exc.message, "retryable": exc.retryable}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        logger.info("checkout error %s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": checkout_error_detail(exc)})
