# reassignment_billing/api/router.py
from fastapi import APIRouter
from reassignment_billing.api import routes_reassignment_billing

api_router = APIRouter()

api_router.include_router(routes_reassignment_billing.router)
