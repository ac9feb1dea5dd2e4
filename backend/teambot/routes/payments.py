from fastapi import APIRouter, Depends, HTTPException

from teambot.core.config import settings
from teambot.core.errors import PaymentNotFound
from teambot.deps import admin_required, get_ledger, get_scheduler
from teambot.schemas.payment import CycleReportRead, PaymentRead, WatermarkRead

router = APIRouter(prefix="/payments", tags=["Payments"], dependencies=[Depends(admin_required)])


@router.get("/watermark", response_model=WatermarkRead)
def watermark(ledger=Depends(get_ledger)):
    try:
        last_order = ledger.get_last_payment_order()
    except PaymentNotFound:
        last_order = None
    return {"last_order": last_order, "default_order": settings.DEFAULT_LAST_ORDER}


@router.get("/unprocessed", response_model=list[PaymentRead])
def unprocessed(ledger=Depends(get_ledger)):
    return ledger.get_unprocessed_payments(settings.SWEEP_SINCE)


@router.post("/check", response_model=CycleReportRead)
async def check(scheduler=Depends(get_scheduler)):
    if scheduler.busy:
        raise HTTPException(status_code=409, detail="Another run is in progress")
    report = await scheduler.run_check()
    if report is None:
        raise HTTPException(status_code=502, detail="Payments check aborted, see logs")
    return report


@router.post("/sweep", response_model=CycleReportRead)
async def sweep(scheduler=Depends(get_scheduler)):
    if scheduler.busy:
        raise HTTPException(status_code=409, detail="Another run is in progress")
    report = await scheduler.run_sweep()
    if report is None:
        raise HTTPException(status_code=502, detail="Sweep aborted, see logs")
    return report
