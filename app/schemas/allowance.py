from datetime import date, datetime
from typing import Annotated, Any, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from app.schemas.payroll import PayrollFrequency


def _calendar_date(value: Any) -> Any:
    # Allowance forms post "YYYY-MM-DD"; stored records come back as full ISO timestamps.
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return value[:10]
    return value


CalendarDate = Annotated[Optional[date], BeforeValidator(_calendar_date)]


class AllowanceSchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    start_date: CalendarDate = Field(default=None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: CalendarDate = Field(default=None, validation_alias=AliasChoices("end_date", "endDate"))


class ScheduleValidation(BaseModel):
    is_valid: bool
    message: Optional[str] = None


class PayrollItemUsage(AllowanceSchedule):
    """An allowance/bonus with its usage tracking, as checked when a payroll run picks items."""

    status: str = "active"
    is_used: bool = Field(default=False, validation_alias=AliasChoices("is_used", "isUsed"))
    last_used_date: CalendarDate = Field(
        default=None, validation_alias=AliasChoices("last_used_date", "lastUsedDate")
    )
