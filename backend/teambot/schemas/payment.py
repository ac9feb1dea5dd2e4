from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class Transaction(BaseModel):
    """One accounted bank transaction as read from the statement feed."""

    order: int
    amount: int
    payer_name: str = ""
    payer_account: str = ""
    message: str = ""
    timestamp: datetime

    class Config:
        frozen = True


class PaymentRead(BaseModel):
    name: str
    account: str
    amount: int
    accounted_order: int
    accounted_at: datetime
    processed_at: Optional[datetime] = None
    payer_name: Optional[str] = None
    resent: bool = False
    unattributed: bool = False

    class Config:
        from_attributes = True


class WatermarkRead(BaseModel):
    last_order: Optional[int] = None
    default_order: int


class CycleReportRead(BaseModel):
    fetched: int
    new: int
    applied: int
    failed: int
    skipped: int
    unattributed: int
    possibly_incomplete: bool
    source: str

    class Config:
        from_attributes = True
