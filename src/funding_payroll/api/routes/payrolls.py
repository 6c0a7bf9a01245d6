"""Single-employment payroll calculation endpoint."""

from fastapi import APIRouter, HTTPException, status

from funding_payroll.api.dependencies import DbSession
from funding_payroll.api.schemas import CalculateRequest, CalculateResponse, ErrorResponse
from funding_payroll.calculators.types import PayrollAdjustments
from funding_payroll.services.batch_service import BulkPayrollService, PayrollValidationError

router = APIRouter(prefix="/payrolls", tags=["payrolls"])

UNPROCESSABLE = 422


@router.post(
    "/calculate",
    response_model=CalculateResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def calculate_payroll(db: DbSession, payload: CalculateRequest) -> CalculateResponse:
    """Calculate one employment's per-allocation lines; with save, upsert them."""
    adjustments = PayrollAdjustments(
        salary_bonus=payload.adjustments.salary_bonus,
        compensation_refund=payload.adjustments.compensation_refund,
        compensation_deduction=payload.adjustments.compensation_deduction,
    )
    try:
        result = await BulkPayrollService(db).calculate_employment(
            payload.employment_id,
            payload.pay_period,
            adjustments=adjustments,
            save=payload.save,
        )
    except PayrollValidationError as e:
        code = status.HTTP_404_NOT_FOUND if e.field == "employment_id" else UNPROCESSABLE
        raise HTTPException(status_code=code, detail=e.message)
    return CalculateResponse.model_validate(result)
