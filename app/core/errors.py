from typing import Any, Dict, List, Optional


class PayrollWorkflowError(Exception):
    """Base error for the payroll batch workflow.

    Validation and duplicate errors are returned inside transition results
    rather than raised; upstream errors are raised by gateways and caught by
    the workflow, which keeps the message on its `error` state.
    """

    code = "PAYROLL_WORKFLOW_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class PayrollValidationError(PayrollWorkflowError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        self.field_errors = dict(field_errors or {})
        super().__init__(message, details={"fields": self.field_errors})


class DuplicateScopeError(PayrollWorkflowError):
    code = "DUPLICATE_SCOPE"

    def __init__(
        self,
        message: str,
        *,
        source: str,
        reference: Optional[str],
        conflicting_ids: List[str],
        approval_status: Optional[str] = None,
    ):
        self.source = source
        self.reference = reference
        self.conflicting_ids = list(conflicting_ids)
        self.approval_status = approval_status
        super().__init__(
            message,
            details={
                "type": f"{source}_overlap",
                "reference": reference,
                "approval_status": approval_status,
                "overlapping_employees": self.conflicting_ids,
            },
        )


class UpstreamServiceError(PayrollWorkflowError):
    code = "UPSTREAM_SERVICE_ERROR"
    retryable = True

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(message, details={"service": service, "status_code": status_code})


class ResolutionError(UpstreamServiceError):
    code = "SCOPE_RESOLUTION_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("employee_directory", message, status_code=status_code)


class PartialDeliveryError(PayrollWorkflowError):
    code = "PARTIAL_DELIVERY"

    def __init__(self, payroll_id: str, failures: List[Dict[str, Any]]):
        self.payroll_id = payroll_id
        self.failures = list(failures)
        super().__init__(
            f"Payslips for payroll {payroll_id} were sent with {len(self.failures)} error(s)",
            details={"payroll_id": payroll_id, "failures": self.failures},
        )


class IllegalTransitionError(PayrollWorkflowError, ValueError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, status: str, action: str):
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} while payroll run is {status}",
            details={"status": status, "action": action},
        )


class BatchNotFoundError(PayrollWorkflowError, ValueError):
    code = "BATCH_NOT_FOUND"

    def __init__(self, payroll_id: str):
        self.payroll_id = payroll_id
        super().__init__(f"Payroll batch {payroll_id} not found", details={"payroll_id": payroll_id})


class RunNotFoundError(PayrollWorkflowError, ValueError):
    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} not found", details={"run_id": run_id})


class ConcurrentRunUpdateError(IllegalTransitionError):
    code = "CONCURRENT_UPDATE"

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        super().__init__(status, "save a payroll run that another request has changed")


class AbandonedAttemptError(PayrollWorkflowError):
    code = "ATTEMPT_ABANDONED"
    retryable = True

    def __init__(self, step: str):
        self.step = step
        super().__init__(
            f"The payroll {step} did not finish; retry it or start over",
            details={"step": step},
        )


class ApprovalNotFoundError(PayrollWorkflowError, ValueError):
    code = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Payroll approval {approval_id} not found", details={"approval_id": approval_id})


class ApprovalNotPendingError(PayrollWorkflowError, ValueError):
    code = "APPROVAL_NOT_PENDING"

    def __init__(self, approval_id: str, message: Optional[str] = None):
        self.approval_id = approval_id
        super().__init__(
            message or "Can only resend pending finance approvals",
            details={"approval_id": approval_id},
        )
