from app.models.payroll_batch_approval import PayrollBatchApproval
from app.models.payroll_workflow_run import PayrollWorkflowRun

__all__ = [
    "PayrollBatchApproval",
    "PayrollWorkflowRun",
]
