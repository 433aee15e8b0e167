"""add payroll workflow run and batch approval tables

Revision ID: 3c1e7a9d5b20
Revises:
Create Date: 2026-10-18 09:12:44.301552
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "3c1e7a9d5b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payroll_workflow_runs",
        sa.Column("run_id", sa.String(), primary_key=True, nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("form", sa.JSON(), nullable=False),
        sa.Column("state", sa.JSON(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_payroll_workflow_runs_run_id"), "payroll_workflow_runs", ["run_id"], unique=False)
    op.create_index(op.f("ix_payroll_workflow_runs_status"), "payroll_workflow_runs", ["status"], unique=False)

    op.create_table(
        "payroll_batch_approvals",
        sa.Column("payroll_id", sa.String(), primary_key=True, nullable=False),
        sa.Column("approval_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("scope_type", sa.String(), nullable=False),
        sa.Column("processing_summary", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("approval_id"),
    )
    op.create_index(
        op.f("ix_payroll_batch_approvals_run_id"), "payroll_batch_approvals", ["run_id"], unique=False
    )
    op.create_index(
        "ix_payroll_batch_approvals_period",
        "payroll_batch_approvals",
        ["year", "month", "frequency"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_payroll_batch_approvals_period", table_name="payroll_batch_approvals")
    op.drop_index(op.f("ix_payroll_batch_approvals_run_id"), table_name="payroll_batch_approvals")
    op.drop_table("payroll_batch_approvals")

    op.drop_index(op.f("ix_payroll_workflow_runs_status"), table_name="payroll_workflow_runs")
    op.drop_index(op.f("ix_payroll_workflow_runs_run_id"), table_name="payroll_workflow_runs")
    op.drop_table("payroll_workflow_runs")
