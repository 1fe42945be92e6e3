from fastapi import APIRouter

from church_approvals.api.v1 import approvals, auth

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
