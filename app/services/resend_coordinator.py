import logging
from typing import Optional, Sequence

from app.core.errors import (
    ApprovalNotFoundError,
    ApprovalNotPendingError,
    BatchNotFoundError,
    PartialDeliveryError,
    PayrollValidationError,
    PayrollWorkflowError,
    UpstreamServiceError,
)
from app.schemas.payroll import DeliveryStatus, FinanceResendReceipt, ResendOutcome
from app.services.batch_store import BatchStore
from app.services.gateways import FinanceApprovalNotifier, PayslipDelivery

logger = logging.getLogger(__name__)


def _required(value: Optional[str], field: str, label: str) -> str:
    value = str(value or "").strip()
    if not value:
        raise PayrollValidationError(f"{label} is required", field_errors={field: "Required"})
    return value


class ResendCoordinator:
    """Re-triggers delivery for a batch that already exists.

    Payslips go out again for an approved payroll, and a preview still waiting
    on Finance can be sent back to Finance. Neither touches payroll amounts,
    so repeating a call only repeats the notification.
    """

    def __init__(
        self,
        delivery: PayslipDelivery,
        batches: BatchStore,
        finance: Optional[FinanceApprovalNotifier] = None,
    ):
        self.delivery = delivery
        self.batches = batches
        self.finance = finance

    def resend(self, payroll_id: str, employee_ids: Optional[Sequence[str]] = None) -> ResendOutcome:
        payroll_id = _required(payroll_id, "payroll_id", "Payroll id")

        recorded = self.batches.exists(payroll_id)
        if not recorded:
            logger.warning(
                "Payroll batch not recorded locally; asking the delivery service",
                extra={"payroll_id": payroll_id},
            )

        targets = [str(v) for v in employee_ids] if employee_ids else None
        try:
            outcome = self.delivery.resend_payslips(payroll_id, targets)
        except UpstreamServiceError as exc:
            if not recorded and exc.status_code == 404:
                raise BatchNotFoundError(payroll_id) from exc
            raise
        except PayrollWorkflowError:
            raise
        except Exception as exc:
            logger.exception("Payslip delivery failed", extra={"payroll_id": payroll_id})
            raise UpstreamServiceError("payslip_delivery", str(exc) or exc.__class__.__name__) from exc

        if outcome.error_count > 0:
            failures = [
                {"employee_id": r.employee_id, "message": r.message}
                for r in outcome.per_employee_results
                if r.status == DeliveryStatus.ERROR
            ]
            warning = PartialDeliveryError(payroll_id, failures)
            outcome = outcome.model_copy(update={"warning": warning.to_dict()})
            logger.warning(
                "Payslips resent with errors",
                extra={
                    "payroll_id": payroll_id,
                    "success_count": outcome.success_count,
                    "error_count": outcome.error_count,
                },
            )
        else:
            logger.info(
                "Payslips resent",
                extra={"payroll_id": payroll_id, "success_count": outcome.success_count},
            )

        return outcome

    def resend_to_finance(self, approval_id: str) -> FinanceResendReceipt:
        """Notify Finance again about a preview still pending their approval."""
        approval_id = _required(approval_id, "approval_id", "Approval id")
        if self.finance is None:
            raise UpstreamServiceError("finance_approval", "No finance approval service is configured")

        try:
            receipt = self.finance.resend_to_finance(approval_id)
        except UpstreamServiceError as exc:
            if exc.status_code == 404:
                raise ApprovalNotFoundError(approval_id) from exc
            if exc.status_code in (400, 409):
                raise ApprovalNotPendingError(approval_id, exc.message) from exc
            raise
        except PayrollWorkflowError:
            raise
        except Exception as exc:
            logger.exception("Resend to Finance failed", extra={"approval_id": approval_id})
            raise UpstreamServiceError("finance_approval", str(exc) or exc.__class__.__name__) from exc

        logger.info("Payroll approval resent to Finance", extra={"approval_id": approval_id})
        return receipt
