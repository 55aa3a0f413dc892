from fastapi import APIRouter, Depends

from .. import schemas, models
from ..core.billing import BatchReport, BillingCycle
from ..deps import get_billing, require_roles

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _report_out(report: BatchReport) -> schemas.BatchReportOut:
    return schemas.BatchReportOut(
        job=report.job,
        succeeded=report.succeeded,
        skipped=report.skipped,
        failed=report.failed,
    )


@router.post("/monthly-invoices", response_model=schemas.BatchReportOut)
def run_monthly_invoices(
    billing: BillingCycle = Depends(get_billing),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Invoice every active member with a plan for the current month. *(Admin-only)*

    Called by the scheduler once a month; invoices are due on the 15th.
    """
    return _report_out(billing.generate_monthly_invoices())


@router.post("/flag-overdue", response_model=schemas.BatchReportOut)
def run_flag_overdue(
    billing: BillingCycle = Depends(get_billing),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """Move members with unpaid monthly invoices back to ``pending``. *(Admin-only)*"""
    return _report_out(billing.flag_overdue())


@router.post("/guest-charges", response_model=schemas.BatchReportOut)
def run_guest_charge_sweep(
    billing: BillingCycle = Depends(get_billing),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Recompute extra-guest charges for the current billing cycle. *(Admin-only)*

    Restores charges whose write failed after the booking was stored.
    Already paid charges are never touched.
    """
    return _report_out(billing.sweep_guest_charges())
