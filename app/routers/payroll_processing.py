from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.errors import (
    ApprovalNotFoundError,
    ApprovalNotPendingError,
    BatchNotFoundError,
    IllegalTransitionError,
    PayrollValidationError,
    RunNotFoundError,
    UpstreamServiceError,
)
from app.deps.gateways import get_batch_store, get_erp_client
from app.schemas.allowance import AllowanceSchedule, ScheduleValidation
from app.schemas.payroll import FinanceResendReceipt, PayrollForm, PayrollFrequency, ScopeType
from app.services import workflow_store
from app.services.allowance_schedule import validate_allowance_schedule
from app.services.batch_store import BatchStore
from app.services.erp_client import ErpClient
from app.services.overlap_detector import OverlapDetector
from app.services.payroll_state import dump_state
from app.services.payroll_workflow import PayrollWorkflow, TransitionResult
from app.services.resend_coordinator import ResendCoordinator
from app.services.scope_resolver import ScopeResolver

router = APIRouter(prefix="/payroll", tags=["Payroll Processing"])


class PayrollFormIn(BaseModel):
    month: Optional[int] = None
    year: Optional[int] = None
    frequency: Optional[PayrollFrequency] = None
    scope: Optional[ScopeType] = None
    department_ids: Optional[List[str]] = None
    employee_ids: Optional[List[str]] = None


class ResendRequest(BaseModel):
    employee_ids: Optional[List[str]] = Field(default=None)


def _serialize_run(workflow: PayrollWorkflow) -> dict:
    return {
        "run_id": workflow.run_id,
        "status": workflow.status.value,
        "form": workflow.form.model_dump(mode="json"),
        "form_errors": workflow.validate_form(),
        "state": dump_state(workflow.state),
    }


def _serialize_transition(workflow: PayrollWorkflow, result: TransitionResult) -> dict:
    body = result.to_dict()
    body["verdict"] = result.verdict.model_dump(mode="json") if result.verdict is not None else None
    body["run"] = _serialize_run(workflow)
    return body


def _open_or_404(run_id: str, client: ErpClient, batches: BatchStore) -> PayrollWorkflow:
    try:
        return workflow_store.open_workflow(
            run_id,
            resolver=ScopeResolver(client),
            detector=OverlapDetector(client),
            previewer=client,
            submitter=client,
            batch_store=batches,
        )
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


def _transition(run_id: str, action: str, client: ErpClient, batches: BatchStore) -> dict:
    workflow = _open_or_404(run_id, client, batches)
    try:
        result = getattr(workflow, action)()
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return _serialize_transition(workflow, result)


@router.post("/runs", status_code=201)
def create_run(payload: Optional[PayrollFormIn] = None):
    changes = payload.model_dump(exclude_none=True) if payload is not None else {}
    run = workflow_store.create_run(PayrollForm.model_validate(changes))
    return {
        "run_id": run.run_id,
        "status": run.status,
        "form": run.form,
        "state": run.state,
    }


@router.get("/runs/{run_id}")
def get_run(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _serialize_run(_open_or_404(run_id, client, batches))


@router.patch("/runs/{run_id}/form")
def update_form(
    run_id: str,
    payload: PayrollFormIn,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    workflow = _open_or_404(run_id, client, batches)
    try:
        workflow.update_form(**payload.model_dump(exclude_none=True))
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return _serialize_run(workflow)


@router.post("/runs/{run_id}/preview")
def request_preview(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _transition(run_id, "request_preview", client, batches)


@router.post("/runs/{run_id}/submit")
def submit_for_approval(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _transition(run_id, "submit_for_approval", client, batches)


@router.post("/runs/{run_id}/retry")
def retry(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _transition(run_id, "retry", client, batches)


@router.post("/runs/{run_id}/acknowledge")
def acknowledge(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _transition(run_id, "acknowledge", client, batches)


@router.post("/runs/{run_id}/reset")
def reset(
    run_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    return _transition(run_id, "reset", client, batches)


@router.post("/batches/{payroll_id}/resend")
def resend_payslips(
    payroll_id: str,
    payload: Optional[ResendRequest] = None,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    coordinator = ResendCoordinator(client, batches, finance=client)
    try:
        outcome = coordinator.resend(payroll_id, payload.employee_ids if payload is not None else None)
    except BatchNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except PayrollValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except UpstreamServiceError as exc:
        raise HTTPException(status_code=502, detail=exc.to_dict()) from exc

    body = outcome.model_dump(mode="json")
    body["first_payslip_url"] = outcome.first_payslip_url
    return body


@router.post("/approvals/{approval_id}/resend", response_model=FinanceResendReceipt)
def resend_to_finance(
    approval_id: str,
    client: ErpClient = Depends(get_erp_client),
    batches: BatchStore = Depends(get_batch_store),
):
    coordinator = ResendCoordinator(client, batches, finance=client)
    try:
        return coordinator.resend_to_finance(approval_id)
    except ApprovalNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except ApprovalNotPendingError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    except PayrollValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except UpstreamServiceError as exc:
        raise HTTPException(status_code=502, detail=exc.to_dict()) from exc


@router.post("/allowance-schedules/validate", response_model=ScheduleValidation)
def validate_schedule(payload: AllowanceSchedule):
    return validate_allowance_schedule(payload)
