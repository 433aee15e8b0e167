from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


def month_name(month: int) -> str:
    if 1 <= int(month) <= 12:
        return MONTH_NAMES[int(month) - 1]
    return "Unknown"


def _ref_id(value: Any) -> Any:
    """Upstream references arrive as raw ids, numbers or populated objects."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
        if value is None:
            return None
    return str(value)


RefId = Annotated[str, BeforeValidator(_ref_id)]
OptionalRefId = Annotated[Optional[str], BeforeValidator(_ref_id)]


class PayrollFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class ScopeType(str, Enum):
    COMPANY = "company"
    DEPARTMENT = "department"
    INDIVIDUAL = "individual"


class PayrollPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int = Field(ge=1, le=12)
    year: int
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY

    @property
    def month_name(self) -> str:
        return month_name(self.month)

    @property
    def label(self) -> str:
        return f"{self.month_name} {self.year}"


class ScopeSelector(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ScopeType
    department_ids: Tuple[str, ...] = ()
    employee_ids: Tuple[str, ...] = ()

    def problems(self) -> Dict[str, str]:
        if self.type == ScopeType.DEPARTMENT and not self.department_ids:
            return {"scope_id": "Please select a department to process payroll for"}
        if self.type == ScopeType.INDIVIDUAL and not self.employee_ids:
            return {"scope_id": "Please select at least one employee to process payroll for"}
        return {}

    def details(self) -> Optional[List[str]]:
        if self.type == ScopeType.INDIVIDUAL:
            return list(self.employee_ids)
        if self.type == ScopeType.DEPARTMENT:
            return list(self.department_ids)
        return None

    def describe(self) -> str:
        if self.type == ScopeType.COMPANY:
            return "Scope: All Employees"
        if self.type == ScopeType.DEPARTMENT:
            return f"Scope: Department ({', '.join(self.department_ids) or 'Unknown'})"
        count = len(self.employee_ids)
        return f"Scope: {count} Selected Employee{'' if count == 1 else 's'}"


class PayrollForm(BaseModel):
    """Raw processing-form input. Fields may be missing until validated."""

    month: Optional[int] = None
    year: Optional[int] = None
    frequency: Optional[PayrollFrequency] = PayrollFrequency.MONTHLY
    scope: Optional[ScopeType] = ScopeType.COMPANY
    department_ids: List[str] = Field(default_factory=list)
    employee_ids: List[str] = Field(default_factory=list)

    def field_errors(self, min_year: int = 2015, max_year: int = 2050) -> Dict[str, str]:
        errors: Dict[str, str] = {}

        if not self.month or self.month < 1 or self.month > 12:
            errors["month"] = "Please select a valid month"

        if not self.year or self.year < min_year or self.year > max_year:
            errors["year"] = "Please select a valid year"

        if not self.frequency:
            errors["frequency"] = "Please select payroll frequency"

        if not self.scope:
            errors["scope"] = "Please select payroll scope"
        else:
            errors.update(self.to_scope().problems())

        return errors

    def to_period(self) -> PayrollPeriod:
        return PayrollPeriod(month=self.month, year=self.year, frequency=self.frequency)

    def to_scope(self) -> ScopeSelector:
        return ScopeSelector(
            type=self.scope,
            department_ids=tuple(self.department_ids) if self.scope == ScopeType.DEPARTMENT else (),
            employee_ids=tuple(self.employee_ids) if self.scope == ScopeType.INDIVIDUAL else (),
        )


# --- upstream read models -------------------------------------------------


class DirectoryEmployee(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RefId = Field(validation_alias=AliasChoices("id", "_id"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    status: Optional[str] = None
    department_id: OptionalRefId = Field(
        default=None, validation_alias=AliasChoices("department_id", "departmentId", "department")
    )

    @property
    def is_payroll_eligible(self) -> bool:
        return bool(self.is_active) and str(self.status or "").upper() == "ACTIVE"


class RecordPeriod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    month: int
    year: int


class _EmployeeRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: OptionalRefId = Field(default=None, validation_alias=AliasChoices("id", "_id"))


class _PreviewLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    employee: Optional[_EmployeeRef] = None

    @field_validator("employee", mode="before")
    @classmethod
    def _wrap_bare_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, dict):
            return value
        return {"id": value}


class _PreviewPayrollData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payrolls: List[_PreviewLine] = Field(default_factory=list)


class _PreviewMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    frequency: PayrollFrequency = PayrollFrequency.MONTHLY


class PendingPreviewRecord(BaseModel):
    """A payroll preview waiting in the approval chain."""

    model_config = ConfigDict(extra="ignore")

    approval_id: RefId = Field(validation_alias=AliasChoices("approval_id", "approvalId"))
    approval_status: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("approval_status", "approvalStatus")
    )
    period: RecordPeriod
    metadata: _PreviewMetadata = Field(default_factory=_PreviewMetadata)
    payroll_data: Optional[_PreviewPayrollData] = Field(
        default=None, validation_alias=AliasChoices("payroll_data", "payrollData")
    )
    employee_ids: List[RefId] = Field(
        default_factory=list, validation_alias=AliasChoices("employee_ids", "employeeIds")
    )

    @property
    def frequency(self) -> PayrollFrequency:
        return self.metadata.frequency

    @property
    def reference(self) -> str:
        return self.approval_id

    def extract_employee_ids(self) -> List[str]:
        if self.payroll_data is not None:
            return [line.employee.id for line in self.payroll_data.payrolls if line.employee and line.employee.id]
        return [str(v) for v in self.employee_ids if v]


class SavedPayrollRecord(BaseModel):
    """A processed payroll. Batch records carry lines, individual ones a single employee."""

    model_config = ConfigDict(extra="ignore")

    payroll_id: RefId = Field(validation_alias=AliasChoices("payroll_id", "payrollId", "_id", "id"))
    period: RecordPeriod
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    employee_ids: Optional[List[RefId]] = Field(
        default=None, validation_alias=AliasChoices("employee_ids", "employeeIds")
    )
    payrolls: Optional[List[_PreviewLine]] = None
    employee: OptionalRefId = None

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_period(cls, data: Any) -> Any:
        if isinstance(data, dict) and "period" not in data and "month" in data and "year" in data:
            data = dict(data)
            data["period"] = {"month": data["month"], "year": data["year"]}
        return data

    @property
    def reference(self) -> str:
        return self.payroll_id

    def extract_employee_ids(self) -> List[str]:
        if self.employee_ids:
            return [str(v) for v in self.employee_ids if v]
        if self.payrolls:
            return [line.employee.id for line in self.payrolls if line.employee and line.employee.id]
        if self.employee:
            return [self.employee]
        return []


# --- preview / approval ---------------------------------------------------


class PayrollTotals(BaseModel):
    gross_pay: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    taxable_income: Decimal = Decimal("0")
    paye: Decimal = Decimal("0")


class PayrollLine(BaseModel):
    employee_id: str
    employee_name: Optional[str] = None
    gross_pay: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    taxable_income: Decimal = Decimal("0")
    paye: Decimal = Decimal("0")


class PayrollLineError(BaseModel):
    employee_id: Optional[str] = None
    message: str


class PreviewResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    employee_count: int = 0
    totals: PayrollTotals = Field(default_factory=PayrollTotals)
    line_items: List[PayrollLine] = Field(default_factory=list)
    errors: List[PayrollLineError] = Field(default_factory=list)


class PreviewRequest(BaseModel):
    month: int
    year: int
    frequency: PayrollFrequency
    scope: ScopeType
    scope_id: Optional[Any] = None


class ApprovalPayload(BaseModel):
    period: PayrollPeriod
    scope: ScopeSelector
    employee_ids: List[str]
    preview: PreviewResult


class ProcessingSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    successful: int = 0
    duplicates: int = 0
    failed: int = 0
    total_employees: int = 0


class BatchApprovalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    approval_id: str
    payroll_id: str
    processing_summary: ProcessingSummary = Field(default_factory=ProcessingSummary)

    def summary_message(self) -> str:
        summary = self.processing_summary
        parts = []
        if summary.successful > 0:
            parts.append(f"{summary.successful} successful")
        if summary.duplicates > 0:
            parts.append(f"{summary.duplicates} duplicates skipped")
        if summary.failed > 0:
            parts.append(f"{summary.failed} failed")

        if parts:
            return f"Payroll processed: {', '.join(parts)} out of {summary.total_employees} employees"
        return f"Payroll processed successfully for {summary.successful} employees"


# --- resend ---------------------------------------------------------------


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class EmployeeDeliveryResult(BaseModel):
    employee_id: str
    status: DeliveryStatus
    payslip_url: Optional[str] = None
    message: Optional[str] = None


class ResendOutcome(BaseModel):
    payroll_id: str
    success_count: int = 0
    error_count: int = 0
    per_employee_results: List[EmployeeDeliveryResult] = Field(default_factory=list)
    warning: Optional[Dict[str, Any]] = None

    @property
    def first_payslip_url(self) -> Optional[str]:
        for result in self.per_employee_results:
            if result.status == DeliveryStatus.SUCCESS and result.payslip_url:
                return result.payslip_url
        return None


class FinanceResendReceipt(BaseModel):
    """Acknowledgement that a pending approval was sent to Finance again."""

    approval_id: str
    status: str = "resent"
    resent_at: Optional[datetime] = None
