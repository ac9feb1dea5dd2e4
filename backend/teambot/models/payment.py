# teambot/models/payment.py
from sqlalchemy import Column, String, DateTime, Integer, BigInteger, Boolean
from sqlalchemy.sql import func
from teambot.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String, nullable=False)      # resolved roster name (or hosts)
    account = Column(String, nullable=False)   # "<number>/<bankCode>", after resent repair
    amount = Column(Integer, nullable=False)
    accounted_order = Column(BigInteger, unique=True, index=True, nullable=False)
    accounted_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)  # null = not applied yet

    payer_name = Column(String, default="")
    message = Column(String, default="")
    resent = Column(Boolean, default=False)
    unattributed = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
