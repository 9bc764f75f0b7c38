from fastapi import APIRouter

from app.api.auth import router as auth_router
from app.api.devices import router as devices_router
from app.api.public.health import router as health_router
from app.api.recovery import router as recovery_router
from app.api.security_requests import router as security_requests_router
from app.api.ws import router as ws_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(ws_router)

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth_router)
v1_router.include_router(security_requests_router)
v1_router.include_router(recovery_router)
v1_router.include_router(devices_router)

api_router.include_router(v1_router)
