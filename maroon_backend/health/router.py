from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from maroon_backend.health import service
from maroon_backend.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/supabase")
def health_supabase():
    return JSONResponse(service.health_supabase_info())


@router.get("/rails")
def health_rails():
    return service.health_rails_info()


@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
