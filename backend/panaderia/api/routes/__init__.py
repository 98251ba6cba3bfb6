from fastapi import APIRouter

from panaderia.api.routes import auth, dashboard, inventory, public


api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["Auth"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["Inventario"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])
api_router.include_router(public.router, prefix="/public", tags=["Public"])
