import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import BaseModel, Field

from app.core.errors import DuplicateScopeError
from app.schemas.payroll import PayrollPeriod, PendingPreviewRecord, SavedPayrollRecord
from app.services.gateways import PayrollRecordsSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

PayrollRecord = Union[PendingPreviewRecord, SavedPayrollRecord]


class OverlapSource(str, Enum):
    PREVIEW = "preview"
    PAYROLL = "payroll"


class OverlapConflict(BaseModel):
    source: OverlapSource
    reference: str
    conflicting_ids: List[str]
    approval_status: Optional[str] = None


class OverlapVerdict(BaseModel):
    has_duplicate: bool = False
    source: Optional[OverlapSource] = None
    conflicting_ids: List[str] = Field(default_factory=list)
    reference: Optional[str] = None
    approval_status: Optional[str] = None
    message: Optional[str] = None
    # True when a record source could not be read and the check ran fail-open.
    degraded: bool = False
    warnings: List[str] = Field(default_factory=list)
    conflicts: List[OverlapConflict] = Field(default_factory=list)

    def to_error(self) -> Optional[DuplicateScopeError]:
        if not self.has_duplicate:
            return None
        return DuplicateScopeError(
            self.message or "Some employees are already included in another payroll for this period",
            source=self.source.value,
            reference=self.reference,
            conflicting_ids=self.conflicting_ids,
            approval_status=self.approval_status,
        )


def extract_employee_ids(record: PayrollRecord) -> List[str]:
    return record.extract_employee_ids()


def _matches_period(record: PayrollRecord, period: PayrollPeriod) -> bool:
    return (
        int(record.period.month) == int(period.month)
        and int(record.period.year) == int(period.year)
        and record.frequency == period.frequency
    )


def _conflict_message(conflict: OverlapConflict, period: PayrollPeriod) -> str:
    window = f"{period.label} ({period.frequency.value})"
    if conflict.source == OverlapSource.PREVIEW:
        status = f", status {conflict.approval_status}" if conflict.approval_status else ""
        return (
            "Cannot create payroll preview: some employees have already been included in "
            f"payroll preview {conflict.reference}{status} for {window}."
        )
    return (
        "Cannot create payroll preview: some employees have already been processed in "
        f"payroll {conflict.reference} for {window}."
    )


class OverlapDetector:
    """Checks a candidate employee set against pending previews and saved payrolls.

    Pending previews are checked before saved payrolls and the first conflict
    found is the one reported; every conflict is still listed in `conflicts`.
    A source that cannot be read is treated as empty (fail-open) and the
    verdict is marked degraded.
    """

    def __init__(self, records: PayrollRecordsSource):
        self.records = records

    def _fetch(self, label: str, fetch: Callable[[], Sequence[T]], warnings: List[str]) -> List[T]:
        try:
            return list(fetch())
        except Exception as exc:
            logger.exception(
                "Overlap check source unavailable; continuing fail-open",
                extra={"record_source": label},
            )
            warnings.append(f"Could not check {label} for duplicates: {exc}")
            return []

    def check_overlap(self, period: PayrollPeriod, candidate_ids: Sequence[str]) -> OverlapVerdict:
        candidates = [str(v) for v in candidate_ids]
        if not candidates:
            return OverlapVerdict()

        warnings: List[str] = []
        pending = self._fetch("pending approvals", self.records.get_pending_approvals, warnings)
        saved = self._fetch(
            "saved payrolls",
            lambda: self.records.get_saved_payrolls(int(period.month), int(period.year)),
            warnings,
        )

        conflicts: List[OverlapConflict] = []
        sources: List[Tuple[OverlapSource, List[PayrollRecord]]] = [
            (OverlapSource.PREVIEW, pending),
            (OverlapSource.PAYROLL, saved),
        ]
        for source, records in sources:
            for record in records:
                if not _matches_period(record, period):
                    continue

                existing = set(extract_employee_ids(record))
                overlap = [v for v in candidates if v in existing]
                if not overlap:
                    continue

                conflicts.append(
                    OverlapConflict(
                        source=source,
                        reference=record.reference,
                        conflicting_ids=overlap,
                        approval_status=getattr(record, "approval_status", None),
                    )
                )

        verdict = OverlapVerdict(degraded=bool(warnings), warnings=warnings, conflicts=conflicts)
        if conflicts:
            first = conflicts[0]
            verdict = verdict.model_copy(
                update={
                    "has_duplicate": True,
                    "source": first.source,
                    "conflicting_ids": first.conflicting_ids,
                    "reference": first.reference,
                    "approval_status": first.approval_status,
                    "message": _conflict_message(first, period),
                }
            )
            logger.info(
                "Payroll overlap found",
                extra={
                    "period": period.label,
                    "frequency": period.frequency.value,
                    "source": first.source.value,
                    "reference": first.reference,
                    "conflict_count": len(conflicts),
                },
            )

        return verdict
