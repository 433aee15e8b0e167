import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from app.core.errors import (
    AbandonedAttemptError,
    ConcurrentRunUpdateError,
    IllegalTransitionError,
    PayrollValidationError,
    PayrollWorkflowError,
    UpstreamServiceError,
)
from app.core.settings import Settings, get_settings
from app.schemas.payroll import (
    ApprovalPayload,
    BatchApprovalResult,
    PayrollForm,
    PayrollPeriod,
    PreviewRequest,
    PreviewResult,
    ScopeSelector,
)
from app.services.gateways import ApprovalSubmitter, PreviewGenerator
from app.services.overlap_detector import OverlapDetector, OverlapVerdict
from app.services.payroll_state import (
    Acknowledged,
    Completed,
    Failed,
    FailedStep,
    Idle,
    PreviewAborted,
    PreviewFailed,
    PreviewRequested,
    PreviewSucceeded,
    Previewed,
    Previewing,
    Reset,
    RunStatus,
    SubmitFailed,
    SubmitRequested,
    SubmitSucceeded,
    WorkflowEvent,
    WorkflowState,
    attempt_expired,
    dump_state,
    reduce,
)
from app.services.scope_resolver import ScopeResolver

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    accepted: bool
    state: WorkflowState
    error: Optional[PayrollWorkflowError] = None
    verdict: Optional[OverlapVerdict] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "status": str(self.state.status),
            "error": self.error.to_dict() if self.error else None,
            "warnings": list(self.warnings),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_workflow_error(service: str, exc: Exception) -> PayrollWorkflowError:
    if isinstance(exc, PayrollWorkflowError):
        return exc
    return UpstreamServiceError(service, str(exc) or exc.__class__.__name__)


class PayrollWorkflow:
    """One payroll batch run: form, preview, approval submission.

    Only one preview or submission is in flight at a time. Completions are
    matched to the attempt that started them, so a result arriving after a
    reset or a newer attempt is dropped.
    """

    def __init__(
        self,
        *,
        resolver: ScopeResolver,
        detector: OverlapDetector,
        previewer: PreviewGenerator,
        submitter: ApprovalSubmitter,
        form: Optional[PayrollForm] = None,
        state: Optional[WorkflowState] = None,
        batch_store=None,
        settings: Optional[Settings] = None,
        run_id: Optional[str] = None,
        revision: int = 0,
        on_change: Optional[Callable[["PayrollWorkflow"], None]] = None,
    ):
        self.resolver = resolver
        self.detector = detector
        self.previewer = previewer
        self.submitter = submitter
        self.batch_store = batch_store
        self.settings = settings or get_settings()
        self.run_id = run_id or str(uuid.uuid4())
        self.revision = revision
        self.on_change = on_change

        self._form = form or PayrollForm()
        self._state: WorkflowState = state or Idle()
        self._lock = threading.Lock()

    # --- read side ---------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def status(self) -> RunStatus:
        return RunStatus(self._state.status)

    @property
    def form(self) -> PayrollForm:
        return self._form

    @property
    def preview(self) -> Optional[PreviewResult]:
        return getattr(self._state, "preview", None)

    @property
    def result(self) -> Optional[BatchApprovalResult]:
        if isinstance(self._state, Completed):
            return self._state.result
        return None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "revision": self.revision,
            "form": self._form.model_dump(mode="json"),
            "state": dump_state(self._state),
        }

    # --- form --------------------------------------------------------------

    def validate_form(self) -> Dict[str, str]:
        return self._form.field_errors(self.settings.payroll_min_year, self.settings.payroll_max_year)

    def update_form(self, **changes) -> PayrollForm:
        with self._lock:
            if self._state.status != RunStatus.IDLE:
                raise IllegalTransitionError(self._state.status, "change the payroll period or scope")
            previous_form, previous_revision = self._form, self.revision
            self._form = PayrollForm.model_validate({**self._form.model_dump(), **changes})
            self.revision += 1
        try:
            self._notify()
        except Exception:
            with self._lock:
                self._form, self.revision = previous_form, previous_revision
            raise
        return self._form

    # --- transitions -------------------------------------------------------

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _apply(self, event: WorkflowEvent) -> WorkflowState:
        with self._lock:
            previous, previous_revision = self._state, self.revision
            self._state = reduce(previous, event)
            self.revision += 1
            current = self._state

        # Memory must match the stored run when the save fails.
        try:
            self._notify()
        except Exception:
            with self._lock:
                self._state, self.revision = previous, previous_revision
            raise

        logger.info(
            "Payroll run transition",
            extra={
                "run_id": self.run_id,
                "from_status": previous.status,
                "to_status": current.status,
                "event": type(event).__name__,
            },
        )
        return current

    def _complete(self, event: WorkflowEvent) -> bool:
        try:
            self._apply(event)
        except ConcurrentRunUpdateError:
            raise
        except IllegalTransitionError:
            logger.warning(
                "Discarding stale payroll run result",
                extra={"run_id": self.run_id, "status": self.status.value, "event": type(event).__name__},
            )
            return False
        return True

    def _current(self) -> WorkflowState:
        with self._lock:
            return self._state

    def _require(self, allowed, action: str) -> WorkflowState:
        state = self._current()
        if state.status not in allowed:
            raise IllegalTransitionError(state.status, action)
        return state

    def recover_abandoned(self, now: Optional[datetime] = None) -> bool:
        """Fail an in-flight attempt whose caller went away.

        A preview or submission that has been in flight longer than
        `in_flight_timeout_seconds` moves the run to `error`, from where it can
        be retried, acknowledged or reset.
        """
        state = self._current()
        if not attempt_expired(state, now or _utcnow(), self.settings.in_flight_timeout_seconds):
            return False

        if isinstance(state, Previewing):
            event = PreviewFailed(state.attempt_id, AbandonedAttemptError("preview"))
        else:
            event = SubmitFailed(state.attempt_id, AbandonedAttemptError("submission"))
        logger.warning(
            "Recovering abandoned payroll run attempt",
            extra={"run_id": self.run_id, "status": state.status, "started_at": str(state.started_at)},
        )
        self._apply(event)
        return True

    def _rejected(self, error: PayrollWorkflowError, **kwargs) -> TransitionResult:
        return TransitionResult(accepted=False, state=self._current(), error=error, **kwargs)

    def request_preview(self) -> TransitionResult:
        self._require((RunStatus.IDLE, RunStatus.ERROR), "request a preview")

        errors = self.validate_form()
        if errors:
            return self._rejected(PayrollValidationError("Please fix the validation errors", field_errors=errors))

        period = self._form.to_period()
        scope = self._form.to_scope()
        attempt_id = uuid.uuid4().hex
        self._apply(PreviewRequested(attempt_id, started_at=_utcnow()))

        try:
            resolution = self.resolver.resolve(scope)
            if resolution.error is not None:
                if isinstance(resolution.error, PayrollValidationError):
                    self._complete(PreviewAborted(attempt_id))
                    return self._rejected(resolution.error)
                return self._fail_preview(attempt_id, resolution.error)

            if not resolution.employee_ids:
                self._complete(PreviewAborted(attempt_id))
                return self._rejected(
                    PayrollValidationError(
                        f"No eligible employees found for payroll. {scope.describe()}",
                        field_errors={"scope": "No eligible employees found"},
                    ),
                    warnings=list(resolution.warnings),
                )

            verdict = self.detector.check_overlap(period, resolution.employee_ids)
            warnings = list(resolution.warnings) + list(verdict.warnings)

            if verdict.has_duplicate:
                self._complete(PreviewAborted(attempt_id))
                return self._rejected(verdict.to_error(), verdict=verdict, warnings=warnings)

            if verdict.degraded and self.settings.overlap_fail_closed:
                error = UpstreamServiceError(
                    "payroll_records",
                    "Duplicate payroll check is unavailable; try again shortly",
                )
                return self._fail_preview(attempt_id, error, verdict=verdict, warnings=warnings)

            preview = self.previewer.get_payroll_preview(
                PreviewRequest(
                    month=period.month,
                    year=period.year,
                    frequency=period.frequency,
                    scope=scope.type,
                    scope_id=scope.details(),
                )
            )
        except ConcurrentRunUpdateError:
            raise
        except Exception as exc:
            logger.exception("Payroll preview failed", extra={"run_id": self.run_id})
            return self._fail_preview(attempt_id, _as_workflow_error("payroll_preview", exc))

        accepted = self._complete(PreviewSucceeded(attempt_id, preview, list(resolution.employee_ids)))
        return TransitionResult(accepted=accepted, state=self._current(), verdict=verdict, warnings=warnings)

    def _fail_preview(self, attempt_id: str, error: PayrollWorkflowError, **kwargs) -> TransitionResult:
        self._complete(PreviewFailed(attempt_id, error))
        return self._rejected(error, **kwargs)

    def submit_for_approval(self) -> TransitionResult:
        state = self._current()
        if not (
            isinstance(state, Previewed)
            or (isinstance(state, Failed) and state.failed_step == FailedStep.PROCESSING)
        ):
            raise IllegalTransitionError(state.status, "submit for approval")

        period = self._form.to_period()
        scope = self._form.to_scope()
        attempt_id = uuid.uuid4().hex
        processing = self._apply(SubmitRequested(attempt_id, started_at=_utcnow()))

        try:
            result = self.submitter.submit_for_approval(
                ApprovalPayload(
                    period=period,
                    scope=scope,
                    employee_ids=list(processing.employee_ids),
                    preview=processing.preview,
                )
            )
        except Exception as exc:
            logger.exception("Payroll submission failed", extra={"run_id": self.run_id})
            error = _as_workflow_error("payroll_approval", exc)
            self._complete(SubmitFailed(attempt_id, error))
            return self._rejected(error)

        warnings = []
        if not self._store_result(result, period, scope):
            warnings.append(
                f"Payroll {result.payroll_id} was submitted but could not be recorded locally; "
                "payslip resend may be unavailable"
            )

        accepted = self._complete(SubmitSucceeded(attempt_id, result))
        if accepted:
            logger.info(
                "Payroll submitted for approval",
                extra={
                    "run_id": self.run_id,
                    "payroll_id": result.payroll_id,
                    "approval_id": result.approval_id,
                    "successful": result.processing_summary.successful,
                    "duplicates": result.processing_summary.duplicates,
                    "failed": result.processing_summary.failed,
                },
            )
        return TransitionResult(accepted=accepted, state=self._current(), warnings=warnings)

    def _store_result(self, result: BatchApprovalResult, period: PayrollPeriod, scope: ScopeSelector) -> bool:
        if self.batch_store is None:
            return True
        try:
            self.batch_store.save(result, period=period, scope=scope, run_id=self.run_id)
        except Exception:
            logger.exception(
                "Could not record approved payroll batch",
                extra={"run_id": self.run_id, "payroll_id": result.payroll_id},
            )
            return False
        return True

    def retry(self) -> TransitionResult:
        state = self._current()
        if not isinstance(state, Failed):
            raise IllegalTransitionError(state.status, "retry")
        if state.failed_step == FailedStep.PROCESSING:
            return self.submit_for_approval()
        return self.request_preview()

    def acknowledge(self) -> TransitionResult:
        self._apply(Acknowledged())
        return TransitionResult(accepted=True, state=self._current())

    def reset(self) -> TransitionResult:
        self._apply(Reset())
        return TransitionResult(accepted=True, state=self._current())
