import asyncio
import threading
from typing import Any, Callable

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from dashboard_api.core.deps import get_pipeline, get_session_user
from dashboard_api.core.errors import InvalidRequestError
from dashboard_api.core.rate_limit import limiter
from dashboard_api.core.security import SessionUser
from dashboard_api.models.metrics import FunnelVariant, PipelineResult, RawDataPoint, TimeFrame
from dashboard_api.schemas.dashboard import (
    DashboardResponse,
    DashboardSummary,
    ErrorResponse,
    OutputRecord,
    ProcessRequest,
    SummaryResponse,
)
from dashboard_api.services.dashboard import (
    DashboardPipeline,
    normalize_card_type,
    parse_date_range,
    resolve_request_range,
    sources_for_card,
)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

_DISCONNECT_POLL_SECONDS = 0.25


async def _run_until_disconnect(
    request: Request,
    func: Callable[..., PipelineResult],
    *args: Any,
    **kwargs: Any,
) -> PipelineResult:
    """Run ``func`` in the threadpool, signalling cancellation if the client leaves."""
    cancel_event = threading.Event()

    async def _watch() -> None:
        while not cancel_event.is_set():
            if await request.is_disconnected():
                cancel_event.set()
                return
            await asyncio.sleep(_DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(_watch())
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel_event, **kwargs)
    finally:
        watcher.cancel()


def _summary(result: PipelineResult) -> DashboardSummary:
    return DashboardSummary(
        sessions=result.summary.sessions,
        leads=result.summary.leads,
        clients=result.summary.clients,
        conversions=result.summary.conversions,
    )


def _response(
    result: PipelineResult,
    time_frame: TimeFrame,
    card_type: str | None,
    debug: dict[str, Any] | None = None,
) -> DashboardResponse:
    return DashboardResponse(
        data=[OutputRecord(**record.as_output()) for record in result.records],
        time_frame=time_frame,
        card_type=card_type,
        summary=_summary(result),
        errors=result.errors or None,
        debug=debug,
    )


_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid range, parameter or body"},
    401: {"model": ErrorResponse, "description": "Missing or invalid access token"},
    502: {"model": ErrorResponse, "description": "Every requested source is unavailable"},
}


def _parse_funnel(value: str | None) -> FunnelVariant | None:
    if not value:
        return None
    try:
        return FunnelVariant(value)
    except ValueError as exc:
        raise InvalidRequestError(f"Unknown funnel: {value}") from exc


@router.get(
    "",
    response_model=DashboardResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def dashboard_data(
    request: Request,
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    time_frame: TimeFrame = Query(default=TimeFrame.daily, alias="timeFrame"),
    card_type: str | None = Query(default=None, alias="cardType"),
    funnel: str | None = Query(default=None),
    periods: str | None = Query(default=None),
    is_full_period: bool = Query(default=False, alias="isFullPeriod"),
    debug_mode: bool = Query(default=False),
    pipeline: DashboardPipeline = Depends(get_pipeline),
    _: SessionUser = Depends(get_session_user),
):
    date_range, days = resolve_request_range(from_, to, periods, is_full_period)
    card = normalize_card_type(card_type)
    variant = _parse_funnel(funnel)

    result = await _run_until_disconnect(
        request, pipeline.run, time_frame, date_range, card, variant, periods=days
    )

    debug = None
    if debug_mode:
        debug = {
            "from": date_range.start.isoformat() if date_range.start else None,
            "to": date_range.end.isoformat() if date_range.end else None,
            "isFullPeriod": date_range.is_empty,
            "periods": days,
            "sources": [s.value for s in sources_for_card(card)],
            "variant": result.variant.value if result.variant else None,
            "phases": result.phases,
        }
    return _response(result, time_frame, card.value if card else None, debug)


@router.get(
    "/summary",
    response_model=SummaryResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def dashboard_summary(
    request: Request,
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    card_type: str | None = Query(default=None, alias="cardType"),
    funnel: str | None = Query(default=None),
    periods: str | None = Query(default=None),
    is_full_period: bool = Query(default=False, alias="isFullPeriod"),
    pipeline: DashboardPipeline = Depends(get_pipeline),
    _: SessionUser = Depends(get_session_user),
):
    date_range, days = resolve_request_range(from_, to, periods, is_full_period)
    card = normalize_card_type(card_type)
    variant = _parse_funnel(funnel)

    result = await _run_until_disconnect(
        request, pipeline.run, TimeFrame.daily, date_range, card, variant, periods=days
    )
    return SummaryResponse(
        summary=_summary(result),
        variant=result.variant.value if result.variant else None,
        errors=result.errors or None,
    )


@router.post(
    "/process",
    response_model=DashboardResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
@limiter.limit("60/minute")
async def process_chart_data(
    request: Request,
    payload: ProcessRequest,
    funnel: str | None = Query(default=None),
    pipeline: DashboardPipeline = Depends(get_pipeline),
    _: SessionUser = Depends(get_session_user),
):
    if not payload.data:
        raise InvalidRequestError("No data provided")

    date_range = parse_date_range(
        payload.date_range.from_ if payload.date_range else None,
        payload.date_range.to if payload.date_range else None,
    )
    points = [RawDataPoint(date=item.date, count=item.count, type=item.type) for item in payload.data]
    result = await run_in_threadpool(
        pipeline.process,
        points,
        payload.time_frame,
        date_range,
        requested_variant=_parse_funnel(funnel),
    )
    return _response(result, payload.time_frame, None)
