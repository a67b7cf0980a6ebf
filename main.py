import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from gateway import DataUnavailable
from periods import InvalidPeriod, PeriodSelector, parse_period_selector
from schemas import DashboardSnapshot, RecentTransaction, SpendingTrendPoint
from services import DashboardService, get_current_user_id

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Financial Dashboard")


def get_dashboard_service() -> DashboardService:
    return DashboardService()


def period_from_request(request: Request) -> PeriodSelector:
    try:
        return parse_period_selector(request.query_params.get("period"))
    except InvalidPeriod as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def category_from_path(category_id: str) -> Optional[int]:
    if category_id == "uncategorized":
        return None
    try:
        return int(category_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid category id: {category_id}"
        ) from exc


@app.exception_handler(DataUnavailable)
def data_unavailable_handler(request: Request, exc: DataUnavailable) -> JSONResponse:
    logger.error(f"data_unavailable: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=503, content={"detail": "Dashboard data is temporarily unavailable"}
    )


@app.get("/api/dashboard", response_model=DashboardSnapshot)
async def api_dashboard(
    period: PeriodSelector = Depends(period_from_request),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.get_dashboard_data(get_current_user_id(), period)


@app.get("/api/dashboard/summary")
async def api_dashboard_summary(
    period: PeriodSelector = Depends(period_from_request),
    service: DashboardService = Depends(get_dashboard_service),
):
    snapshot = await service.get_dashboard_data(get_current_user_id(), period)
    return {"summary": snapshot.summary, "last_updated": snapshot.last_updated}


@app.get("/api/dashboard/insights")
async def api_dashboard_insights(
    service: DashboardService = Depends(get_dashboard_service),
):
    snapshot = await service.get_dashboard_data(
        get_current_user_id(), PeriodSelector.current_month
    )
    return {"insights": snapshot.insights, "last_updated": snapshot.last_updated}


@app.get("/api/dashboard/trends", response_model=list[SpendingTrendPoint])
async def api_dashboard_trends(
    months: Optional[int] = Query(default=None, ge=1, le=24),
    service: DashboardService = Depends(get_dashboard_service),
):
    trends = await service.get_spending_trends(get_current_user_id(), months)
    return list(trends)


@app.get(
    "/api/dashboard/transactions/category/{category_id}",
    response_model=list[RecentTransaction],
)
async def api_transactions_by_category(
    category_id: str,
    period: PeriodSelector = Depends(period_from_request),
    service: DashboardService = Depends(get_dashboard_service),
):
    items = await service.get_transactions_by_category(
        get_current_user_id(), category_from_path(category_id), period
    )
    return list(items)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
