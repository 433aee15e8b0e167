import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import ConcurrentRunUpdateError, RunNotFoundError
from app.database import SessionLocal
from app.models.payroll_workflow_run import PayrollWorkflowRun
from app.schemas.payroll import PayrollForm
from app.services.payroll_state import Idle, dump_state, load_state
from app.services.payroll_workflow import PayrollWorkflow


def _get_db() -> Session:
    return SessionLocal()


def _get_run(db: Session, run_id: str) -> PayrollWorkflowRun:
    run = db.query(PayrollWorkflowRun).filter_by(run_id=run_id).first()
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def create_run(form: Optional[PayrollForm] = None) -> PayrollWorkflowRun:
    form = form or PayrollForm()
    state = Idle()

    db = _get_db()
    try:
        run = PayrollWorkflowRun(
            run_id=str(uuid.uuid4()),
            status=state.status,
            form=form.model_dump(mode="json"),
            state=dump_state(state),
            revision=0,
        )
        db.add(run)
        db.commit()
        db.refresh(run)
        return run
    finally:
        db.close()


def get_run(run_id: str) -> PayrollWorkflowRun:
    db = _get_db()
    try:
        return _get_run(db, run_id)
    finally:
        db.close()


def save_run(workflow: PayrollWorkflow) -> None:
    """Persist the workflow if nobody else has written the run since it was loaded.

    Every change bumps `workflow.revision` by one, so the stored row must be
    exactly one revision behind.
    """
    snapshot = workflow.snapshot()
    expected = workflow.revision - 1

    db = _get_db()
    try:
        updated = (
            db.query(PayrollWorkflowRun)
            .filter(
                PayrollWorkflowRun.run_id == workflow.run_id,
                PayrollWorkflowRun.revision == expected,
            )
            .update(
                {
                    PayrollWorkflowRun.status: workflow.status.value,
                    PayrollWorkflowRun.form: snapshot["form"],
                    PayrollWorkflowRun.state: snapshot["state"],
                    PayrollWorkflowRun.revision: workflow.revision,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            db.rollback()
            _get_run(db, workflow.run_id)
            raise ConcurrentRunUpdateError(workflow.run_id, workflow.status.value)
        db.commit()
    finally:
        db.close()


def open_workflow(run_id: str, **collaborators) -> PayrollWorkflow:
    """Load a stored run as a workflow that writes itself back on every change.

    A run left in flight by a request that never finished is moved to `error`
    once its attempt has timed out.
    """
    run = get_run(run_id)
    workflow = PayrollWorkflow(
        run_id=run.run_id,
        form=PayrollForm.model_validate(run.form),
        state=load_state(run.state),
        revision=run.revision,
        on_change=save_run,
        **collaborators,
    )
    workflow.recover_abandoned()
    return workflow
