"""Bulk payroll API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Response, status

from funding_payroll.api.dependencies import DbSession, Queue
from funding_payroll.api.schemas import (
    BatchCreatedResponse,
    BatchStatusResponse,
    BulkBatchCreate,
    BulkPreviewRequest,
    BulkPreviewResponse,
    ErrorResponse,
)
from funding_payroll.services.batch_processor import BatchNotFoundError
from funding_payroll.services.batch_service import BulkPayrollService, PayrollValidationError
from funding_payroll.services.job_queue import QueueUnavailableError
from funding_payroll.services.state_machine import InvalidTransitionError

router = APIRouter(prefix="/bulk-payroll", tags=["bulk-payroll"])

UNPROCESSABLE = 422


def _validation_error(e: PayrollValidationError) -> HTTPException:
    return HTTPException(
        status_code=UNPROCESSABLE,
        detail=e.message,
        headers={"X-Error-Field": e.field},
    )


def _not_found(e: BatchNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


# ============================================================================
# Preview and submission
# ============================================================================


@router.post(
    "/preview",
    response_model=BulkPreviewResponse,
    responses={422: {"model": ErrorResponse}},
)
async def preview_bulk_payroll(db: DbSession, payload: BulkPreviewRequest) -> BulkPreviewResponse:
    """Dry-run a pay period: per-employee lines, totals and warnings. Writes nothing."""
    service = BulkPayrollService(db)
    try:
        result = await service.preview(payload.pay_period, payload.filters.model_dump(mode="json"))
    except PayrollValidationError as e:
        raise _validation_error(e)
    return BulkPreviewResponse.model_validate(result)


@router.post(
    "/batches",
    response_model=BatchCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def create_bulk_batch(
    db: DbSession,
    queue: Queue,
    payload: BulkBatchCreate,
) -> BatchCreatedResponse:
    """Create a batch and queue it for background processing."""
    service = BulkPayrollService(db, job_queue=queue)
    try:
        batch = await service.create_batch(
            payload.pay_period,
            payload.filters.model_dump(mode="json"),
            created_by=payload.created_by,
        )
    except PayrollValidationError as e:
        raise _validation_error(e)
    except QueueUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )
    return BatchCreatedResponse.model_validate(batch)


# ============================================================================
# Batch tracking
# ============================================================================


@router.get(
    "/batches/{batch_id}",
    response_model=BatchStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_bulk_batch_status(
    db: DbSession,
    batch_id: Annotated[UUID, Path()],
) -> BatchStatusResponse:
    """Progress, counters and the first error entries of a batch."""
    try:
        result = await BulkPayrollService(db).get_batch_status(batch_id)
    except BatchNotFoundError as e:
        raise _not_found(e)
    return BatchStatusResponse.model_validate(result)


@router.post(
    "/batches/{batch_id}/cancel",
    response_model=BatchStatusResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_bulk_batch(
    db: DbSession,
    batch_id: Annotated[UUID, Path()],
) -> BatchStatusResponse:
    """Cancel a pending batch, or ask a processing one to stop."""
    service = BulkPayrollService(db)
    try:
        await service.cancel_batch(batch_id)
        result = await service.get_batch_status(batch_id)
    except BatchNotFoundError as e:
        raise _not_found(e)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return BatchStatusResponse.model_validate(result)


@router.get(
    "/batches/{batch_id}/errors",
    response_class=Response,
    responses={
        200: {"content": {"text/csv": {}}},
        404: {"model": ErrorResponse},
    },
)
async def download_bulk_batch_errors(
    db: DbSession,
    batch_id: Annotated[UUID, Path()],
) -> Response:
    """All error entries of a batch as a CSV attachment."""
    try:
        content = await BulkPayrollService(db).download_batch_errors(batch_id)
    except BatchNotFoundError as e:
        raise _not_found(e)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="batch-{batch_id}-errors.csv"'},
    )
