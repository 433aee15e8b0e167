"""Interfaces of the ERP services the payroll workflow calls into.

Implementations raise `UpstreamServiceError` when a call fails.
`app.services.erp_client.ErpClient` implements all of them over HTTP.
"""

from typing import List, Optional, Protocol, Sequence

from app.schemas.payroll import (
    ApprovalPayload,
    BatchApprovalResult,
    DirectoryEmployee,
    FinanceResendReceipt,
    PendingPreviewRecord,
    PreviewRequest,
    PreviewResult,
    ResendOutcome,
    SavedPayrollRecord,
)


class EmployeeDirectory(Protocol):
    def get_all_employees(self) -> List[DirectoryEmployee]: ...

    def get_employees_by_department(self, department_id: str) -> List[DirectoryEmployee]: ...


class PayrollRecordsSource(Protocol):
    def get_pending_approvals(self) -> List[PendingPreviewRecord]: ...

    def get_saved_payrolls(self, month: int, year: int) -> List[SavedPayrollRecord]: ...


class PreviewGenerator(Protocol):
    def get_payroll_preview(self, request: PreviewRequest) -> PreviewResult: ...


class ApprovalSubmitter(Protocol):
    def submit_for_approval(self, payload: ApprovalPayload) -> BatchApprovalResult: ...


class PayslipDelivery(Protocol):
    def resend_payslips(self, payroll_id: str, employee_ids: Optional[Sequence[str]] = None) -> ResendOutcome: ...


class FinanceApprovalNotifier(Protocol):
    def resend_to_finance(self, approval_id: str) -> FinanceResendReceipt: ...
