from fastapi import APIRouter

from app.api.routes import applications, audit_logs, login, users, utils

api_router = APIRouter()
api_router.include_router(login.router)
api_router.include_router(users.router)
api_router.include_router(utils.router)
api_router.include_router(applications.router)
api_router.include_router(audit_logs.router)
