from sqlalchemy import JSON, Column, DateTime, Integer, String, func

from app.database import Base


class PayrollWorkflowRun(Base):
    __tablename__ = "payroll_workflow_runs"

    run_id = Column(String, primary_key=True, index=True)
    status = Column(String, nullable=False, default="idle", index=True)

    form = Column(JSON, nullable=False)
    state = Column(JSON, nullable=False)

    # Bumped on every write; saves are conditional on the revision they loaded.
    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
