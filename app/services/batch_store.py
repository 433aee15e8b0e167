from typing import Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.payroll_batch_approval import PayrollBatchApproval
from app.schemas.payroll import BatchApprovalResult, PayrollPeriod, ProcessingSummary, ScopeSelector


def _to_result(row: PayrollBatchApproval) -> BatchApprovalResult:
    return BatchApprovalResult(
        approval_id=row.approval_id,
        payroll_id=row.payroll_id,
        processing_summary=ProcessingSummary.model_validate(row.processing_summary or {}),
    )


class BatchStore:
    """Approved payroll batches, keyed by payroll id.

    A batch is written once; saving the same payroll id again returns the
    stored result unchanged.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def _get_db(self) -> Session:
        return self.session_factory()

    def save(
        self,
        result: BatchApprovalResult,
        *,
        period: PayrollPeriod,
        scope: ScopeSelector,
        run_id: Optional[str] = None,
    ) -> BatchApprovalResult:
        db = self._get_db()
        try:
            existing = db.query(PayrollBatchApproval).filter_by(payroll_id=result.payroll_id).first()
            if existing is not None:
                return _to_result(existing)

            row = PayrollBatchApproval(
                payroll_id=result.payroll_id,
                approval_id=result.approval_id,
                run_id=run_id,
                month=period.month,
                year=period.year,
                frequency=period.frequency.value,
                scope_type=scope.type.value,
                processing_summary=result.processing_summary.model_dump(),
            )
            db.add(row)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, payroll_id: str) -> Optional[BatchApprovalResult]:
        db = self._get_db()
        try:
            row = db.query(PayrollBatchApproval).filter_by(payroll_id=payroll_id).first()
            return _to_result(row) if row is not None else None
        finally:
            db.close()

    def exists(self, payroll_id: str) -> bool:
        return self.get(payroll_id) is not None
