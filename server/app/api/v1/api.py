from fastapi import APIRouter

from app.api.v1.endpoints import bills, clients

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(bills.router, prefix="/billing", tags=["billing"])
