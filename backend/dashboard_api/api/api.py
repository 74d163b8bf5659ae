from fastapi import APIRouter

from dashboard_api.api.routes import dashboard

api_router = APIRouter()
api_router.include_router(dashboard.router)
