from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import (
    ConcurrentRunUpdateError,
    DuplicateScopeError,
    IllegalTransitionError,
    PayrollValidationError,
    ResolutionError,
    UpstreamServiceError,
)
from app.core.settings import get_settings
from app.schemas.payroll import PayrollForm
from app.services.batch_store import BatchStore
from app.services.payroll_state import FailedStep, Previewing, Processing, RunStatus
from app.services.resend_coordinator import ResendCoordinator


def _company_form(**overrides):
    data = {"month": 6, "year": 2025, "frequency": "monthly", "scope": "company"}
    data.update(overrides)
    return PayrollForm.model_validate(data)


@pytest.fixture
def staffed_erp(fake_erp):
    fake_erp.add_employee("E1")
    fake_erp.add_employee("E2")
    return fake_erp


def test_company_run_previews_and_submits_to_completion(staffed_erp, workflow_factory):
    workflow = workflow_factory(form=_company_form())

    preview = workflow.request_preview()
    assert preview.accepted is True
    assert workflow.status == RunStatus.PREVIEWED
    assert workflow.preview.employee_count == 2

    request = staffed_erp.preview_requests[0]
    assert (request.month, request.year, request.scope.value) == (6, 2025, "company")
    assert request.scope_id is None

    submitted = workflow.submit_for_approval()
    assert submitted.accepted is True
    assert workflow.status == RunStatus.COMPLETED
    assert workflow.result.approval_id == "APR-1001"

    payload = staffed_erp.submissions[0]
    assert payload.employee_ids == ["E1", "E2"]
    assert payload.preview == workflow.preview


def test_individual_scope_already_paid_aborts_with_duplicate_and_stays_idle(staffed_erp, workflow_factory):
    staffed_erp.add_saved_payroll("PAY-555", 6, 2025, ["E1"])
    workflow = workflow_factory(form=_company_form(scope="individual", employee_ids=["E1"]))

    result = workflow.request_preview()

    assert result.accepted is False
    assert isinstance(result.error, DuplicateScopeError)
    assert result.error.reference == "PAY-555"
    assert "PAY-555" in result.error.message
    assert workflow.status == RunStatus.IDLE
    assert "get_payroll_preview" not in staffed_erp.call_names()


def test_invalid_form_blocks_preview_without_calling_out(fake_erp, workflow_factory):
    workflow = workflow_factory(form=PayrollForm(month=13, year=1999, scope="department"))

    result = workflow.request_preview()

    assert result.accepted is False
    assert isinstance(result.error, PayrollValidationError)
    assert set(result.error.field_errors) == {"month", "year", "scope_id"}
    assert workflow.status == RunStatus.IDLE
    assert fake_erp.calls == []


def test_scope_without_eligible_employees_returns_to_idle(fake_erp, workflow_factory):
    fake_erp.add_employee("E1", is_active=False)
    workflow = workflow_factory(form=_company_form())

    result = workflow.request_preview()

    assert isinstance(result.error, PayrollValidationError)
    assert workflow.status == RunStatus.IDLE


def test_submit_from_idle_is_rejected(workflow_factory):
    workflow = workflow_factory(form=_company_form())

    with pytest.raises(IllegalTransitionError):
        workflow.submit_for_approval()

    assert workflow.status == RunStatus.IDLE


def test_form_is_read_only_after_completion_until_reset(staffed_erp, workflow_factory):
    workflow = workflow_factory(form=_company_form())
    workflow.request_preview()
    workflow.submit_for_approval()

    with pytest.raises(IllegalTransitionError):
        workflow.update_form(month=7)
    assert workflow.form.month == 6

    workflow.reset()
    assert workflow.status == RunStatus.IDLE
    assert workflow.preview is None

    workflow.update_form(month=7)
    assert workflow.form.month == 7


def test_form_cannot_change_after_preview(staffed_erp, workflow_factory):
    workflow = workflow_factory(form=_company_form())
    workflow.request_preview()

    with pytest.raises(IllegalTransitionError):
        workflow.update_form(scope="individual", employee_ids=["E2"])


def test_directory_outage_moves_run_to_error_and_retry_recovers(staffed_erp, workflow_factory):
    staffed_erp.fail("get_all_employees")
    workflow = workflow_factory(form=_company_form())

    failed = workflow.request_preview()
    assert isinstance(failed.error, ResolutionError)
    assert workflow.status == RunStatus.ERROR
    assert workflow.state.failed_step == FailedStep.PREVIEW
    assert workflow.state.retryable is True

    staffed_erp.failures.clear()
    retried = workflow.retry()

    assert retried.accepted is True
    assert workflow.status == RunStatus.PREVIEWED


def test_failed_submission_retries_with_the_same_preview(staffed_erp, workflow_factory):
    workflow = workflow_factory(form=_company_form())
    workflow.request_preview()
    preview = workflow.preview

    staffed_erp.fail("submit_for_approval", RuntimeError("connection reset"))
    failed = workflow.submit_for_approval()

    assert isinstance(failed.error, UpstreamServiceError)
    assert failed.error.message == "connection reset"
    assert workflow.status == RunStatus.ERROR
    assert workflow.state.failed_step == FailedStep.PROCESSING

    staffed_erp.failures.clear()
    workflow.retry()

    assert workflow.status == RunStatus.COMPLETED
    assert staffed_erp.submissions[-1].preview == preview
    assert staffed_erp.call_names().count("get_payroll_preview") == 1


def test_acknowledge_returns_error_to_idle(staffed_erp, workflow_factory):
    staffed_erp.fail("get_payroll_preview")
    workflow = workflow_factory(form=_company_form())
    workflow.request_preview()

    workflow.acknowledge()

    assert workflow.status == RunStatus.IDLE
    with pytest.raises(IllegalTransitionError):
        workflow.acknowledge()


def test_degraded_overlap_check_proceeds_by_default(staffed_erp, workflow_factory):
    staffed_erp.fail("get_saved_payrolls")
    workflow = workflow_factory(form=_company_form())

    result = workflow.request_preview()

    assert result.accepted is True
    assert result.verdict.degraded is True
    assert len(result.warnings) == 1


def test_degraded_overlap_check_fails_closed_when_configured(staffed_erp, workflow_factory):
    staffed_erp.fail("get_saved_payrolls")
    settings = replace(get_settings(), overlap_fail_closed=True)
    workflow = workflow_factory(form=_company_form(), settings=settings)

    result = workflow.request_preview()

    assert isinstance(result.error, UpstreamServiceError)
    assert workflow.status == RunStatus.ERROR
    assert "get_payroll_preview" not in staffed_erp.call_names()


def test_completed_run_records_the_batch_for_resend(staffed_erp, workflow_factory):
    store = BatchStore()
    workflow = workflow_factory(form=_company_form(), batch_store=store)
    workflow.request_preview()
    workflow.submit_for_approval()

    stored = store.get("PAY-2001")
    assert stored is not None
    assert stored.approval_id == "APR-1001"
    assert stored.processing_summary.successful == 2


def test_batch_store_failure_does_not_fail_the_run_or_block_resend(staffed_erp, workflow_factory):
    class BrokenStore(BatchStore):
        def save(self, *args, **kwargs):
            raise RuntimeError("disk full")

    store = BrokenStore()
    workflow = workflow_factory(form=_company_form(), batch_store=store)
    workflow.request_preview()

    result = workflow.submit_for_approval()

    assert workflow.status == RunStatus.COMPLETED
    assert len(result.warnings) == 1
    assert store.get("PAY-2001") is None

    outcome = ResendCoordinator(staffed_erp, store).resend(workflow.result.payroll_id)
    assert outcome.success_count == 2


def test_department_preview_sends_department_ids_as_scope_id(fake_erp, workflow_factory):
    fake_erp.add_employee("E1", department_id="D7")
    workflow = workflow_factory(form=_company_form(scope="department", department_ids=["D7"]))

    workflow.request_preview()

    assert fake_erp.preview_requests[0].scope_id == ["D7"]
    assert fake_erp.submissions == []


def test_failed_save_leaves_the_run_as_it_was(staffed_erp, workflow_factory):
    def reject(workflow):
        raise ConcurrentRunUpdateError(workflow.run_id, workflow.status.value)

    workflow = workflow_factory(form=_company_form(), on_change=reject)

    with pytest.raises(ConcurrentRunUpdateError):
        workflow.request_preview()

    assert workflow.status == RunStatus.IDLE
    assert workflow.revision == 0
    assert staffed_erp.calls == []


def test_concurrent_update_while_completing_is_raised_not_discarded(staffed_erp, workflow_factory):
    def reject_completion(workflow):
        if workflow.status == RunStatus.PREVIEWED:
            raise ConcurrentRunUpdateError(workflow.run_id, workflow.status.value)

    workflow = workflow_factory(form=_company_form(), on_change=reject_completion)

    with pytest.raises(ConcurrentRunUpdateError):
        workflow.request_preview()

    assert workflow.status == RunStatus.PREVIEWING
    assert workflow.revision == 1


def test_abandoned_preview_times_out_to_error_and_can_be_retried(staffed_erp, workflow_factory):
    started = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
    workflow = workflow_factory(
        form=_company_form(),
        state=Previewing(attempt_id="gone", started_at=started),
        settings=replace(get_settings(), in_flight_timeout_seconds=300),
    )

    assert workflow.recover_abandoned(now=started + timedelta(seconds=30)) is False
    assert workflow.status == RunStatus.PREVIEWING

    assert workflow.recover_abandoned(now=started + timedelta(hours=1)) is True
    assert workflow.status == RunStatus.ERROR
    assert workflow.state.failed_step == FailedStep.PREVIEW
    assert workflow.state.error_code == "ATTEMPT_ABANDONED"

    assert workflow.retry().accepted is True
    assert workflow.status == RunStatus.PREVIEWED


def test_abandoned_submission_keeps_the_preview_for_retry(staffed_erp, workflow_factory):
    state = Processing(attempt_id="gone", preview=staffed_erp.preview, employee_ids=["E1", "E2"])
    workflow = workflow_factory(form=_company_form(), state=state)

    assert workflow.recover_abandoned() is True
    assert workflow.state.failed_step == FailedStep.PROCESSING

    workflow.retry()

    assert workflow.status == RunStatus.COMPLETED
    assert staffed_erp.submissions[0].employee_ids == ["E1", "E2"]


def test_idle_run_has_nothing_to_recover(workflow_factory):
    workflow = workflow_factory(form=_company_form())

    assert workflow.recover_abandoned() is False
    assert workflow.revision == 0
