"""HTTP client for the ERP payroll and user APIs.

Every endpoint answers with a `{success, message, data}` envelope. Transport
errors, non-2xx responses and `success: false` all surface as
`UpstreamServiceError` carrying the server's message when there is one.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from app.core.errors import UpstreamServiceError
from app.core.settings import Settings, get_settings
from app.schemas.payroll import (
    ApprovalPayload,
    BatchApprovalResult,
    DeliveryStatus,
    DirectoryEmployee,
    EmployeeDeliveryResult,
    FinanceResendReceipt,
    PayrollLine,
    PayrollLineError,
    PayrollTotals,
    PendingPreviewRecord,
    PreviewRequest,
    PreviewResult,
    ProcessingSummary,
    ResendOutcome,
    SavedPayrollRecord,
)

logger = logging.getLogger(__name__)


def _money(value: Any) -> Decimal:
    if isinstance(value, dict):
        value = value.get("amount", 0)
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


class _WireLineSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gross_pay: Any = Field(default=0, validation_alias=AliasChoices("grossPay", "gross_pay"))
    net_pay: Any = Field(default=0, validation_alias=AliasChoices("netPay", "net_pay"))
    total_deductions: Any = Field(default=0, validation_alias=AliasChoices("totalDeductions", "total_deductions"))
    taxable_income: Any = Field(default=0, validation_alias=AliasChoices("taxableIncome", "taxable_income"))


class _WireLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    employee: Any = None
    summary: _WireLineSummary = Field(default_factory=_WireLineSummary)
    deductions: Dict[str, Any] = Field(default_factory=dict)
    paye: Any = None

    def to_line(self) -> Optional[PayrollLine]:
        employee = self.employee
        if isinstance(employee, dict):
            employee_id = employee.get("_id") or employee.get("id")
            name = " ".join(v for v in (employee.get("firstName"), employee.get("lastName")) if v) or None
        else:
            employee_id, name = employee, None
        if not employee_id:
            return None

        paye = self.paye if self.paye is not None else self.deductions.get("paye")
        return PayrollLine(
            employee_id=str(employee_id),
            employee_name=name,
            gross_pay=_money(self.summary.gross_pay),
            deductions=_money(self.summary.total_deductions),
            net_pay=_money(self.summary.net_pay),
            taxable_income=_money(self.summary.taxable_income),
            paye=_money(paye),
        )


class _WirePreview(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_employees: Optional[int] = Field(default=None, validation_alias=AliasChoices("totalEmployees", "employeeCount"))
    total_gross_pay: Any = Field(default=None, validation_alias="totalGrossPay")
    total_net_pay: Any = Field(default=None, validation_alias="totalNetPay")
    total_deductions: Any = Field(default=None, validation_alias="totalDeductions")
    total_taxable_income: Any = Field(default=None, validation_alias="totalTaxableIncome")
    total_paye: Any = Field(default=None, validation_alias=AliasChoices("totalPAYE", "totalPaye"))
    payrolls: List[_WireLine] = Field(default_factory=list)
    errors: List[Any] = Field(default_factory=list)

    def to_result(self) -> PreviewResult:
        lines = [line for line in (w.to_line() for w in self.payrolls) if line is not None]

        def total(reported: Any, attr: str) -> Decimal:
            if reported is not None:
                return _money(reported)
            return sum((getattr(line, attr) for line in lines), Decimal("0"))

        errors = []
        for err in self.errors:
            if isinstance(err, dict):
                employee_id = err.get("employeeId") or err.get("employee_id")
                errors.append(
                    PayrollLineError(
                        employee_id=str(employee_id) if employee_id else None,
                        message=str(err.get("error") or err.get("message") or "Unknown error"),
                    )
                )
            else:
                errors.append(PayrollLineError(message=str(err)))

        return PreviewResult(
            employee_count=self.total_employees if self.total_employees is not None else len(lines),
            totals=PayrollTotals(
                gross_pay=total(self.total_gross_pay, "gross_pay"),
                deductions=total(self.total_deductions, "deductions"),
                net_pay=total(self.total_net_pay, "net_pay"),
                taxable_income=total(self.total_taxable_income, "taxable_income"),
                paye=total(self.total_paye, "paye"),
            ),
            line_items=lines,
            errors=errors,
        )


def _approval_result(data: Dict[str, Any]) -> BatchApprovalResult:
    approval = data.get("approval") or {}
    payroll = data.get("payroll") or {}

    approval_id = data.get("approvalId") or approval.get("approvalId")
    if not approval_id:
        raise UpstreamServiceError("payroll_approval", "Approval response did not include an approval id")

    payroll_id = data.get("payrollId") or payroll.get("payrollId") or payroll.get("_id") or approval_id

    raw_summary = data.get("processingSummary") or payroll.get("processingSummary")
    if raw_summary:
        summary = ProcessingSummary(
            successful=int(raw_summary.get("successful", 0)),
            duplicates=int(raw_summary.get("duplicates", 0)),
            failed=int(raw_summary.get("failed", 0)),
            total_employees=int(raw_summary.get("totalEmployees", raw_summary.get("total_employees", 0))),
        )
    else:
        total_employees = int(payroll.get("totalEmployees") or 0)
        summary = ProcessingSummary(successful=total_employees, total_employees=total_employees)

    return BatchApprovalResult(approval_id=str(approval_id), payroll_id=str(payroll_id), processing_summary=summary)


def _resend_outcome(payroll_id: str, data: Dict[str, Any]) -> ResendOutcome:
    results = []
    for item in data.get("results") or []:
        status = DeliveryStatus.SUCCESS if item.get("status") == "success" else DeliveryStatus.ERROR
        results.append(
            EmployeeDeliveryResult(
                employee_id=str(item.get("employeeId") or item.get("employee_id") or ""),
                status=status,
                payslip_url=item.get("payslipUrl"),
                message=item.get("message"),
            )
        )

    success_count = data.get("successCount")
    error_count = data.get("errorCount")
    return ResendOutcome(
        payroll_id=payroll_id,
        success_count=int(success_count) if success_count is not None else sum(
            1 for r in results if r.status == DeliveryStatus.SUCCESS
        ),
        error_count=int(error_count) if error_count is not None else sum(
            1 for r in results if r.status == DeliveryStatus.ERROR
        ),
        per_employee_results=results,
    )


class ErpClient:
    """Implements every gateway protocol in `app.services.gateways`."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        *,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        settings = settings or get_settings()
        headers = {"Accept": "application/json"}
        token = token if token is not None else settings.erp_api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.http_client = httpx.Client(
            base_url=base_url or settings.erp_api_base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.erp_api_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> "ErpClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, service: str, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.http_client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("ERP request timed out", extra={"service": service, "path": path})
            raise UpstreamServiceError(service, "Request timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning("ERP request failed", extra={"service": service, "path": path, "reason": str(exc)})
            raise UpstreamServiceError(service, f"Network error: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                "ERP request rejected",
                extra={"service": service, "path": path, "status_code": response.status_code},
            )
            raise UpstreamServiceError(
                service,
                message or f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise UpstreamServiceError(service, "Unexpected response body", status_code=response.status_code)
        if body.get("success") is False:
            raise UpstreamServiceError(
                service, body.get("message") or "Request was not successful", status_code=response.status_code
            )
        return body.get("data")

    def _parse_list(self, service: str, model, items: Any) -> list:
        try:
            return [model.model_validate(item) for item in (items or [])]
        except ValidationError as exc:
            raise UpstreamServiceError(service, f"Malformed response: {exc.error_count()} invalid record(s)") from exc

    # --- EmployeeDirectory -------------------------------------------------

    def get_all_employees(self) -> List[DirectoryEmployee]:
        data = self._request("employee_directory", "GET", "/api/users")
        if isinstance(data, dict):
            data = data.get("users") or data.get("employees") or []
        return self._parse_list("employee_directory", DirectoryEmployee, data)

    def get_employees_by_department(self, department_id: str) -> List[DirectoryEmployee]:
        data = self._request("employee_directory", "GET", "/api/users", params={"department": department_id})
        if isinstance(data, dict):
            data = data.get("users") or data.get("employees") or []
        return self._parse_list("employee_directory", DirectoryEmployee, data)

    # --- PayrollRecordsSource ----------------------------------------------

    def get_pending_approvals(self) -> List[PendingPreviewRecord]:
        data = self._request("payroll_records", "GET", "/api/payroll/pending-approvals")
        return self._parse_list("payroll_records", PendingPreviewRecord, data)

    def get_saved_payrolls(self, month: int, year: int) -> List[SavedPayrollRecord]:
        data = self._request(
            "payroll_records", "GET", "/api/payroll/saved", params={"month": int(month), "year": int(year)}
        )
        if isinstance(data, dict):
            data = data.get("payrolls") or []
        return self._parse_list("payroll_records", SavedPayrollRecord, data)

    # --- PreviewGenerator --------------------------------------------------

    def get_payroll_preview(self, request: PreviewRequest) -> PreviewResult:
        data = self._request(
            "payroll_preview",
            "POST",
            "/api/payroll/preview",
            json={
                "month": request.month,
                "year": request.year,
                "frequency": request.frequency.value,
                "scope": request.scope.value,
                "scopeId": request.scope_id,
            },
        )
        try:
            return _WirePreview.model_validate(data or {}).to_result()
        except ValidationError as exc:
            raise UpstreamServiceError("payroll_preview", "Malformed preview response") from exc

    # --- ApprovalSubmitter -------------------------------------------------

    def submit_for_approval(self, payload: ApprovalPayload) -> BatchApprovalResult:
        period = payload.period
        preview = payload.preview
        payroll_data = {
            "period": {
                "month": period.month,
                "year": period.year,
                "monthName": period.month_name,
                "frequency": period.frequency.value,
            },
            "scope": {"type": payload.scope.type.value, "details": payload.scope.details()},
            "employeeIds": list(payload.employee_ids),
            "totalEmployees": preview.employee_count,
            "totalGrossPay": str(preview.totals.gross_pay),
            "totalDeductions": str(preview.totals.deductions),
            "totalNetPay": str(preview.totals.net_pay),
            "totalTaxableIncome": str(preview.totals.taxable_income),
            "totalPAYE": str(preview.totals.paye),
            "payrolls": [
                {
                    "employee": line.employee_id,
                    "summary": {
                        "grossPay": str(line.gross_pay),
                        "netPay": str(line.net_pay),
                        "totalDeductions": str(line.deductions),
                        "taxableIncome": str(line.taxable_income),
                    },
                    "paye": str(line.paye),
                }
                for line in preview.line_items
            ],
        }
        data = self._request(
            "payroll_approval", "POST", "/api/payroll/submit-for-approval", json={"payrollData": payroll_data}
        )
        return _approval_result(data or {})

    # --- PayslipDelivery ---------------------------------------------------

    def resend_payslips(self, payroll_id: str, employee_ids: Optional[Sequence[str]] = None) -> ResendOutcome:
        data = self._request(
            "payslip_delivery",
            "POST",
            "/api/payroll/resend-payslips",
            json={"payrollId": payroll_id, "employeeIds": list(employee_ids) if employee_ids else None},
        )
        return _resend_outcome(payroll_id, data or {})

    # --- FinanceApprovalNotifier -------------------------------------------

    def resend_to_finance(self, approval_id: str) -> FinanceResendReceipt:
        data = self._request("finance_approval", "POST", f"/api/payroll/approvals/{approval_id}/resend") or {}
        return FinanceResendReceipt(
            approval_id=str(data.get("approvalId") or approval_id),
            status=str(data.get("status") or "resent"),
            resent_at=data.get("resentAt"),
        )
