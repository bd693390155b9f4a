from fastapi import APIRouter

from disputeflow.api.v1.disputes import router as disputes_router

v1_router = APIRouter()

v1_router.include_router(disputes_router)
