import os
from pathlib import Path

import pytest

TEST_DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{Path(__file__).resolve().parents[2] / 'payroll_workflow_test.db'}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from app import database  # noqa: E402
from app.core.errors import UpstreamServiceError  # noqa: E402
from app.core.settings import get_settings  # noqa: E402
from app.schemas.payroll import (  # noqa: E402
    BatchApprovalResult,
    DeliveryStatus,
    DirectoryEmployee,
    EmployeeDeliveryResult,
    FinanceResendReceipt,
    PayrollLine,
    PayrollTotals,
    PendingPreviewRecord,
    PreviewResult,
    ProcessingSummary,
    ResendOutcome,
    SavedPayrollRecord,
)
from app.services.overlap_detector import OverlapDetector  # noqa: E402
from app.services.payroll_workflow import PayrollWorkflow  # noqa: E402
from app.services.scope_resolver import ScopeResolver  # noqa: E402


class FakeErp:
    """In-memory stand-in for every ERP gateway, recording the calls it gets."""

    def __init__(self):
        self.employees = []
        self.pending = []
        self.saved = []
        self.failures = {}
        self.calls = []
        self.preview_requests = []
        self.submissions = []
        self.preview = PreviewResult(
            employee_count=2,
            totals=PayrollTotals(gross_pay="500000", deductions="90000", net_pay="410000", paye="60000"),
            line_items=[
                PayrollLine(employee_id="E1", gross_pay="250000", deductions="45000", net_pay="205000", paye="30000"),
                PayrollLine(employee_id="E2", gross_pay="250000", deductions="45000", net_pay="205000", paye="30000"),
            ],
        )
        self.approval = BatchApprovalResult(
            approval_id="APR-1001",
            payroll_id="PAY-2001",
            processing_summary=ProcessingSummary(successful=2, total_employees=2),
        )
        self.resend_outcome = None
        self.unknown_payrolls = set()
        self.approval_statuses = {}

    def add_employee(self, employee_id, department_id="D1", is_active=True, status="ACTIVE"):
        self.employees.append(
            {"_id": employee_id, "isActive": is_active, "status": status, "department": {"_id": department_id}}
        )

    def add_pending_preview(self, approval_id, month, year, employee_ids, frequency="monthly", approval_status="pending"):
        self.pending.append(
            {
                "approvalId": approval_id,
                "approvalStatus": approval_status,
                "period": {"month": month, "year": year},
                "metadata": {"frequency": frequency},
                "payrollData": {"payrolls": [{"employee": {"_id": e}} for e in employee_ids]},
            }
        )

    def add_saved_payroll(self, payroll_id, month, year, employee_ids, frequency="monthly"):
        self.saved.append(
            {
                "_id": payroll_id,
                "month": month,
                "year": year,
                "frequency": frequency,
                "payrolls": [{"employee": {"_id": e}} for e in employee_ids],
            }
        )

    def fail(self, name, error=None):
        self.failures[name] = error or UpstreamServiceError("erp", f"{name} unavailable", status_code=503)

    def call_names(self):
        return [c[0] for c in self.calls]

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        error = self.failures.get(name)
        if error is not None:
            raise error

    def get_all_employees(self):
        self._call("get_all_employees")
        return [DirectoryEmployee.model_validate(e) for e in self.employees]

    def get_employees_by_department(self, department_id):
        self._call("get_employees_by_department", department_id)
        employees = [DirectoryEmployee.model_validate(e) for e in self.employees]
        return [e for e in employees if e.department_id == department_id]

    def get_pending_approvals(self):
        self._call("get_pending_approvals")
        return [PendingPreviewRecord.model_validate(r) for r in self.pending]

    def get_saved_payrolls(self, month, year):
        self._call("get_saved_payrolls", month, year)
        records = [SavedPayrollRecord.model_validate(r) for r in self.saved]
        return [r for r in records if r.period.month == month and r.period.year == year]

    def get_payroll_preview(self, request):
        self._call("get_payroll_preview")
        self.preview_requests.append(request)
        return self.preview

    def submit_for_approval(self, payload):
        self._call("submit_for_approval")
        self.submissions.append(payload)
        return self.approval

    def resend_payslips(self, payroll_id, employee_ids=None):
        self._call("resend_payslips", payroll_id, employee_ids)
        if payroll_id in self.unknown_payrolls:
            raise UpstreamServiceError("payslip_delivery", "Payroll not found", status_code=404)
        if self.resend_outcome is not None:
            return self.resend_outcome
        targets = employee_ids or ["E1", "E2"]
        return ResendOutcome(
            payroll_id=payroll_id,
            success_count=len(targets),
            per_employee_results=[
                EmployeeDeliveryResult(
                    employee_id=e,
                    status=DeliveryStatus.SUCCESS,
                    payslip_url=f"/api/payroll/payslips/{payroll_id}/view/{e}",
                )
                for e in targets
            ],
        )

    def resend_to_finance(self, approval_id):
        self._call("resend_to_finance", approval_id)
        status = self.approval_statuses.get(approval_id)
        if status is None:
            raise UpstreamServiceError("finance_approval", "Payroll approval not found", status_code=404)
        if status != "pending_finance":
            raise UpstreamServiceError(
                "finance_approval", "Can only resend pending finance approvals", status_code=400
            )
        return FinanceResendReceipt(approval_id=approval_id)


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    database.configure_database()
    database.Base.metadata.drop_all(bind=database.engine)
    database.create_tables()


def _clear_tables() -> None:
    with database.engine.begin() as conn:
        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function", autouse=True)
def _clear_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture
def fake_erp():
    return FakeErp()


@pytest.fixture
def workflow_factory(fake_erp):
    def _make(form=None, settings=None, **kwargs):
        return PayrollWorkflow(
            resolver=ScopeResolver(fake_erp),
            detector=OverlapDetector(fake_erp),
            previewer=fake_erp,
            submitter=fake_erp,
            form=form,
            settings=settings or get_settings(),
            **kwargs,
        )

    return _make
