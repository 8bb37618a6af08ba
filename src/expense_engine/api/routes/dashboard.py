"""Dashboard endpoint."""

from fastapi import APIRouter

from expense_engine.api.dependencies import CurrentUser, DbSession
from expense_engine.api.schemas import DashboardStatsResponse
from expense_engine.services.dashboard_service import get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(db: DbSession, user: CurrentUser) -> DashboardStatsResponse:
    """Counters for the caller's dashboard."""
    stats = await get_dashboard_stats(db, user)
    return DashboardStatsResponse.model_validate(stats)
