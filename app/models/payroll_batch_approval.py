from sqlalchemy import JSON, Column, DateTime, Integer, String, func
from sqlalchemy.schema import Index

from app.database import Base


class PayrollBatchApproval(Base):
    __tablename__ = "payroll_batch_approvals"

    payroll_id = Column(String, primary_key=True)
    approval_id = Column(String, nullable=False, unique=True)
    run_id = Column(String, nullable=True, index=True)

    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    frequency = Column(String, nullable=False)
    scope_type = Column(String, nullable=False)

    processing_summary = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_payroll_batch_approvals_period", "year", "month", "frequency"),)
