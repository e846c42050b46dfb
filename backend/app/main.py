import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from . import auth, schemas
from .dependencies import (
    get_ab_testing_service,
    get_content_service,
    get_promotion_service,
)
from .errors import ConfigurationError, NotFound, StoreUnavailable, ValidationError
from .observability import (
    configure_logging,
    configure_tracing,
    get_logger,
    get_metrics_snapshot,
    log_event,
)
from .services.ab_testing import ABTestingService
from .services.content import ContentService
from .services.promotions import PromotionService

app = FastAPI(title="AutoPromote")


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    configure_tracing(app)


@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:
    logger = get_logger()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "request_completed",
        extra={
            "event": "request_completed",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    log_event(get_logger(), "store_unavailable", reason=exc.reason, path=request.url.path)
    return JSONResponse(status_code=503, content={"detail": exc.reason})


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
def metrics(_: schemas.Principal = Depends(auth.require_admin)) -> list[dict]:
    return get_metrics_snapshot()


# content


@app.post(
    "/content", response_model=schemas.UploadResult, status_code=status.HTTP_201_CREATED
)
def upload_content(
    payload: schemas.ContentCreate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.UploadResult:
    try:
        return service.create_content(principal.user_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/content", response_model=list[schemas.Content])
def list_my_content(
    status_filter: Optional[schemas.ContentStatus] = Query(None, alias="status"),
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> list[schemas.Content]:
    return service.list_content(principal, status=status_filter)


@app.patch("/content/bulk/status", response_model=list[schemas.Content])
def bulk_update_status(
    payload: schemas.BulkStatusUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> list[schemas.Content]:
    return service.bulk_update_status(principal, payload)


@app.post("/content/bulk/schedule", response_model=list[schemas.BulkScheduleResult])
def bulk_schedule(
    payload: schemas.BulkScheduleRequest,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> list[schemas.BulkScheduleResult]:
    for content_id in payload.content_ids:
        try:
            service.get_content(content_id, principal)
        except NotFound as exc:
            raise HTTPException(status_code=403, detail="content_access_denied") from exc
    return promotions.bulk_schedule_promotions(
        payload.content_ids, payload.schedule_template
    )


@app.get("/content/{content_id}", response_model=schemas.Content)
def get_content(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.get_content(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/content/{content_id}", response_model=schemas.Content)
def update_content(
    content_id: int,
    payload: schemas.ContentUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.update_content(content_id, principal, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/content/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_content(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> Response:
    try:
        service.delete_content(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.patch("/content/{content_id}/status", response_model=schemas.Content)
def update_content_status(
    content_id: int,
    payload: schemas.ContentStatusUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.update_status(content_id, principal, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/content/{content_id}/performance", response_model=schemas.Content)
def record_performance(
    content_id: int,
    payload: schemas.PerformanceUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.record_performance(content_id, principal, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/content/{content_id}/promote", response_model=schemas.PromotionStarted)
def promote_content(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.PromotionStarted:
    try:
        return service.promote_now(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/content/{content_id}/optimization", response_model=schemas.OptimizationReport)
def get_optimization(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.OptimizationReport:
    try:
        return service.get_optimization(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=exc.reason) from exc


@app.get("/content/{content_id}/estimates", response_model=schemas.RateEstimate)
def get_rate_estimate(
    content_id: int,
    platform: schemas.Platform,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.RateEstimate:
    try:
        return service.estimate_rates(content_id, principal, platform)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/content/{content_id}/roi", response_model=schemas.ROIEstimate)
def get_roi_estimate(
    content_id: int,
    platform: schemas.Platform,
    budget: float,
    risk_profile: str = "moderate",
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.ROIEstimate:
    try:
        return service.estimate_roi(content_id, principal, platform, budget, risk_profile)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=exc.reason) from exc


@app.get(
    "/content/{content_id}/scheduling-options", response_model=schemas.SchedulingOptions
)
def get_scheduling_options(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
) -> schemas.SchedulingOptions:
    try:
        return service.get_scheduling_options(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


# promotion schedules


@app.get(
    "/content/{content_id}/promotion-schedules",
    response_model=list[schemas.PromotionSchedule],
)
def list_promotion_schedules(
    content_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> list[schemas.PromotionSchedule]:
    try:
        service.get_content(content_id, principal)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return promotions.get_content_promotion_schedules(content_id)


@app.post(
    "/content/{content_id}/promotion-schedules",
    response_model=schemas.PromotionSchedule,
    status_code=status.HTTP_201_CREATED,
)
def create_promotion_schedule(
    content_id: int,
    payload: schemas.PromotionScheduleCreate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> schemas.PromotionSchedule:
    try:
        service.get_content(content_id, principal)
        return promotions.schedule_promotion(content_id, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/promotion-schedules/{schedule_id}", response_model=schemas.PromotionSchedule)
def update_promotion_schedule(
    schedule_id: int,
    payload: schemas.PromotionScheduleUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> schemas.PromotionSchedule:
    try:
        service.require_schedule_access(schedule_id, principal)
        return promotions.update_promotion_schedule(schedule_id, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/promotion-schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_promotion_schedule(
    schedule_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> Response:
    try:
        service.require_schedule_access(schedule_id, principal)
        promotions.delete_promotion_schedule(schedule_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get(
    "/promotion-schedules/{schedule_id}/analytics",
    response_model=schemas.PromotionAnalytics,
)
def get_promotion_analytics(
    schedule_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    promotions: PromotionService = Depends(get_promotion_service),
) -> schemas.PromotionAnalytics:
    try:
        service.require_schedule_access(schedule_id, principal)
        return promotions.get_promotion_analytics(schedule_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


# admin


@app.get("/admin/content", response_model=list[schemas.Content])
def list_all_content(
    status_filter: Optional[schemas.ContentStatus] = Query(None, alias="status"),
    _: schemas.Principal = Depends(auth.require_admin),
    service: ContentService = Depends(get_content_service),
) -> list[schemas.Content]:
    return service.list_all_content(status=status_filter)


@app.post("/admin/content/{content_id}/approve", response_model=schemas.Content)
def approve_content(
    content_id: int,
    _: schemas.Principal = Depends(auth.require_admin),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.approve_content(content_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/admin/content/{content_id}/decline", response_model=schemas.Content)
def decline_content(
    content_id: int,
    _: schemas.Principal = Depends(auth.require_admin),
    service: ContentService = Depends(get_content_service),
) -> schemas.Content:
    try:
        return service.decline_content(content_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/admin/active-promotions", response_model=list[schemas.ActivePromotion])
def list_active_promotions(
    platform: Optional[schemas.SchedulePlatform] = None,
    content_type: Optional[schemas.ContentType] = None,
    min_budget: Optional[float] = None,
    max_budget: Optional[float] = None,
    _: schemas.Principal = Depends(auth.require_admin),
    promotions: PromotionService = Depends(get_promotion_service),
) -> list[schemas.ActivePromotion]:
    filters = schemas.ActivePromotionFilters(
        platform=platform,
        content_type=content_type,
        min_budget=min_budget,
        max_budget=max_budget,
    )
    return promotions.get_active_promotions(filters)


@app.get("/admin/promotion-performance", response_model=schemas.PromotionPerformanceReport)
def get_promotion_performance(
    _: schemas.Principal = Depends(auth.require_admin),
    promotions: PromotionService = Depends(get_promotion_service),
) -> schemas.PromotionPerformanceReport:
    return promotions.get_promotion_performance()


@app.post(
    "/admin/process-completed-promotions", response_model=schemas.ProcessedPromotions
)
def process_completed_promotions(
    _: schemas.Principal = Depends(auth.require_admin),
    promotions: PromotionService = Depends(get_promotion_service),
) -> schemas.ProcessedPromotions:
    processed = promotions.process_completed_promotions()
    return schemas.ProcessedPromotions(
        message=f"Processed {processed} completed promotions",
        processed_count=processed,
    )


# a/b tests


def _require_test_access(
    test_id: int,
    principal: schemas.Principal,
    service: ContentService,
    ab_testing: ABTestingService,
) -> None:
    test = ab_testing.store.get_ab_test(test_id)
    try:
        service.get_content(test.content_id, principal)
    except NotFound as exc:
        raise NotFound("ab_test_not_found") from exc


@app.post("/ab-tests", response_model=schemas.ABTest, status_code=status.HTTP_201_CREATED)
def create_ab_test(
    payload: schemas.ABTestCreate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    ab_testing: ABTestingService = Depends(get_ab_testing_service),
) -> schemas.ABTest:
    try:
        service.get_content(payload.content_id, principal)
        return ab_testing.create_test(payload.content_id, payload.variants)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/ab-tests/{test_id}/variants/{variant_id}/metrics", response_model=schemas.ABTest)
def update_ab_test_metrics(
    test_id: int,
    variant_id: str,
    payload: schemas.VariantMetricsUpdate,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    ab_testing: ABTestingService = Depends(get_ab_testing_service),
) -> schemas.ABTest:
    try:
        _require_test_access(test_id, principal, service, ab_testing)
        return ab_testing.update_test_metrics(test_id, variant_id, payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/ab-tests/{test_id}/winner", response_model=schemas.VariantScore)
def determine_ab_test_winner(
    test_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    ab_testing: ABTestingService = Depends(get_ab_testing_service),
) -> schemas.VariantScore:
    try:
        _require_test_access(test_id, principal, service, ab_testing)
        return ab_testing.determine_winner(test_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/ab-tests/{test_id}", response_model=schemas.ABTestResults)
def get_ab_test_results(
    test_id: int,
    principal: schemas.Principal = Depends(auth.get_current_principal),
    service: ContentService = Depends(get_content_service),
    ab_testing: ABTestingService = Depends(get_ab_testing_service),
) -> schemas.ABTestResults:
    try:
        _require_test_access(test_id, principal, service, ab_testing)
        return ab_testing.get_test_results(test_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
