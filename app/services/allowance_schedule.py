import calendar
from datetime import date
from typing import FrozenSet, Optional, Union

from app.schemas.allowance import AllowanceSchedule, PayrollItemUsage, ScheduleValidation
from app.schemas.payroll import PayrollFrequency, month_name

DateInput = Union[date, str, None]

_ALL_MONTHS = frozenset(range(1, 13))
_QUARTER_MONTHS = frozenset({3, 6, 9, 12})
_YEAR_END_MONTHS = frozenset({12})

MIN_QUARTERLY_SPAN_MONTHS = 3


def processing_months(frequency: Union[PayrollFrequency, str]) -> FrozenSet[int]:
    """Months in which items of this frequency are eligible to run.

    One-time items run once, in whichever month they first become eligible.
    """
    frequency = PayrollFrequency(frequency)
    if frequency == PayrollFrequency.QUARTERLY:
        return _QUARTER_MONTHS
    if frequency == PayrollFrequency.YEARLY:
        return _YEAR_END_MONTHS
    return _ALL_MONTHS


def _inclusive_month_span(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def validate_schedule(
    frequency: Union[PayrollFrequency, str],
    start_date: DateInput,
    end_date: DateInput = None,
) -> ScheduleValidation:
    schedule = AllowanceSchedule(frequency=frequency, start_date=start_date, end_date=end_date)
    return validate_allowance_schedule(schedule)


def validate_allowance_schedule(schedule: AllowanceSchedule) -> ScheduleValidation:
    start = schedule.start_date
    end = schedule.end_date

    if start is None:
        return ScheduleValidation(is_valid=True)

    if schedule.frequency in (PayrollFrequency.MONTHLY, PayrollFrequency.ONE_TIME):
        return ScheduleValidation(is_valid=True)

    if end is None:
        return ScheduleValidation(is_valid=True)

    if schedule.frequency == PayrollFrequency.YEARLY:
        if end.year < start.year:
            return ScheduleValidation(
                is_valid=False,
                message=(
                    f"End date {end.isoformat()} is before the start date {start.isoformat()}; "
                    "a yearly allowance needs a December on or after its start date."
                ),
            )
        if end.month < 12:
            return ScheduleValidation(
                is_valid=False,
                message=(
                    f"Yearly allowances are only processed in December. End date {end.isoformat()} "
                    f"falls in {month_name(end.month)} {end.year}, before December {end.year}, "
                    "so this allowance would never be paid. Extend the end date to December or later."
                ),
            )
        return ScheduleValidation(is_valid=True)

    span = _inclusive_month_span(start, end)
    if span < MIN_QUARTERLY_SPAN_MONTHS:
        quarter_months = [month_name(m) for m in sorted(processing_months(PayrollFrequency.QUARTERLY))]
        return ScheduleValidation(
            is_valid=False,
            message=(
                f"Quarterly allowances are processed in {', '.join(quarter_months[:-1])} and {quarter_months[-1]}. "
                f"The window from {start.isoformat()} to {end.isoformat()} covers only "
                f"{max(span, 0)} month(s), so end date {end.isoformat()} closes it before the next "
                f"quarter. Choose an end date at least {MIN_QUARTERLY_SPAN_MONTHS} months after the start."
            ),
        )
    return ScheduleValidation(is_valid=True)


def is_available_for_payroll(
    item: PayrollItemUsage,
    month: int,
    year: int,
    payroll_frequency: Union[PayrollFrequency, str] = PayrollFrequency.MONTHLY,
    payroll_date: Optional[date] = None,
) -> bool:
    """Whether a recurring item can be picked up by a payroll run for month/year.

    Without a payroll_date the item only has to be active at some point
    during the processing month.
    """
    payroll_frequency = PayrollFrequency(payroll_frequency)

    if str(item.status).lower() != "active":
        return False

    if item.is_used:
        if item.frequency == PayrollFrequency.ONE_TIME:
            return False
        if item.last_used_date is not None:
            if item.last_used_date.month == int(month) and item.last_used_date.year == int(year):
                return False

    if payroll_date is not None:
        window_start = window_end = payroll_date
    else:
        window_start = date(int(year), int(month), 1)
        window_end = date(int(year), int(month), calendar.monthrange(int(year), int(month))[1])

    if item.start_date is not None and window_end < item.start_date:
        return False
    if item.end_date is not None and window_start > item.end_date:
        return False

    if payroll_frequency == PayrollFrequency.MONTHLY:
        return True
    if payroll_frequency == PayrollFrequency.QUARTERLY:
        return item.frequency in (PayrollFrequency.QUARTERLY, PayrollFrequency.YEARLY)
    if payroll_frequency == PayrollFrequency.YEARLY:
        return item.frequency == PayrollFrequency.YEARLY
    return item.frequency == PayrollFrequency.ONE_TIME
