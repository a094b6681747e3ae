"""API routes."""

from fastapi import APIRouter

from app.api.routes import orders, payments, tables

api_router = APIRouter()

api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
