# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_transfers,
    routes_stock,
)

api_router = APIRouter()

api_router.include_router(routes_transfers.router)
api_router.include_router(routes_stock.router)
