from fastapi import APIRouter, Depends
from app.core.errors import to_http
from app.core.security import get_actor
from app.modules.performance.schemas import PerformanceSnapshot, TeamMemberStats
from app.modules.performance.service import PerformanceAggregator
from app.modules.profiles.schemas import Actor
from app.platform.provider_registry import registry

router = APIRouter()

def svc() -> PerformanceAggregator:
    return PerformanceAggregator(registry.store())

@router.get("/performance/daily", response_model=PerformanceSnapshot)
async def daily_performance(actor: Actor = Depends(get_actor), service: PerformanceAggregator = Depends(svc)):
    snapshot, err = await service.compute_daily(actor)
    if err:
        raise to_http(err)
    return snapshot

@router.get("/performance/team", response_model=list[TeamMemberStats])
async def team_performance(actor: Actor = Depends(get_actor), service: PerformanceAggregator = Depends(svc)):
    members, err = await service.compute_team(actor)
    if err:
        raise to_http(err)
    return members
