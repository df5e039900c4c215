from fastapi import APIRouter
from app.modules.conversations.router import router as conversations_router
from app.modules.appointments.router import router as appointments_router
from app.modules.performance.router import router as performance_router
from app.modules.realtime.router import router as realtime_router

api_router = APIRouter()
api_router.include_router(conversations_router, tags=["conversations"])
api_router.include_router(appointments_router, tags=["appointments"])
api_router.include_router(performance_router, tags=["performance"])
api_router.include_router(realtime_router, tags=["realtime"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
