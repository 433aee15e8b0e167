from datetime import date

import pytest

from app.schemas.allowance import AllowanceSchedule, PayrollItemUsage
from app.services.allowance_schedule import (
    is_available_for_payroll,
    processing_months,
    validate_allowance_schedule,
    validate_schedule,
)


@pytest.mark.parametrize(
    "start, end",
    [
        ("2025-01-01", "2025-01-31"),
        ("2025-05-10", "2024-01-01"),
        ("2025-05-10", None),
    ],
)
def test_monthly_schedules_are_always_valid(start, end):
    assert validate_schedule("monthly", start, end).is_valid is True


def test_yearly_schedule_ending_before_december_is_rejected():
    result = validate_schedule("yearly", "2025-01-15", "2025-11-30")

    assert result.is_valid is False
    assert "December" in result.message
    assert "2025-11-30" in result.message


def test_yearly_schedule_reaching_december_is_accepted():
    assert validate_schedule("yearly", "2025-01-15", "2025-12-31").is_valid is True


def test_yearly_schedule_ending_in_an_earlier_year_is_rejected():
    assert validate_schedule("yearly", "2025-01-01", "2024-12-31").is_valid is False


def test_quarterly_schedule_needs_at_least_three_months():
    assert validate_schedule("quarterly", "2025-01-01", "2025-03-31").is_valid is True

    short = validate_schedule("quarterly", "2025-01-01", "2025-02-28")
    assert short.is_valid is False
    assert "2025-02-28" in short.message


def test_open_ended_and_undated_schedules_are_valid():
    assert validate_schedule("quarterly", "2025-01-01").is_valid is True
    assert validate_schedule("yearly", None, "2025-03-01").is_valid is True


def test_schedule_accepts_camel_case_fields_and_iso_timestamps():
    schedule = AllowanceSchedule.model_validate(
        {"frequency": "yearly", "startDate": "2025-02-01T00:00:00.000Z", "endDate": "2025-06-30T00:00:00.000Z"}
    )

    assert schedule.start_date == date(2025, 2, 1)
    assert validate_allowance_schedule(schedule).is_valid is False


def test_processing_months_by_frequency():
    assert processing_months("quarterly") == {3, 6, 9, 12}
    assert processing_months("yearly") == {12}
    assert len(processing_months("monthly")) == 12


def _item(**overrides):
    data = {"frequency": "monthly", "start_date": "2025-01-01", "status": "active"}
    data.update(overrides)
    return PayrollItemUsage.model_validate(data)


def test_inactive_or_spent_items_are_not_available():
    assert is_available_for_payroll(_item(status="inactive"), 6, 2025) is False
    assert is_available_for_payroll(_item(frequency="one_time", is_used=True), 6, 2025) is False
    assert is_available_for_payroll(_item(is_used=True, last_used_date="2025-06-03"), 6, 2025) is False
    assert is_available_for_payroll(_item(is_used=True, last_used_date="2025-05-03"), 6, 2025) is True


def test_item_must_be_active_during_the_processing_month():
    assert is_available_for_payroll(_item(start_date="2025-07-01"), 6, 2025) is False
    assert is_available_for_payroll(_item(start_date="2025-06-30"), 6, 2025) is True
    assert is_available_for_payroll(_item(end_date="2025-05-31"), 6, 2025) is False
    assert is_available_for_payroll(_item(start_date="2025-06-20"), 6, 2025, payroll_date=date(2025, 6, 10)) is False


def test_payroll_frequency_decides_which_item_frequencies_are_picked_up():
    quarterly_item = _item(frequency="quarterly")
    monthly_item = _item(frequency="monthly")
    yearly_item = _item(frequency="yearly")

    assert is_available_for_payroll(quarterly_item, 6, 2025, "monthly") is True
    assert is_available_for_payroll(monthly_item, 6, 2025, "quarterly") is False
    assert is_available_for_payroll(yearly_item, 12, 2025, "quarterly") is True
    assert is_available_for_payroll(quarterly_item, 12, 2025, "yearly") is False
    assert is_available_for_payroll(yearly_item, 12, 2025, "yearly") is True
