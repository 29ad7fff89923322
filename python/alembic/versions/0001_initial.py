"""job, lease, composite and worker registration tables

Revision ID: 0001
Revises:
Create Date: 2025-06-01 00:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

# Microsecond precision on MySQL/MariaDB; plain DATETIME there keeps whole seconds.
TIMESTAMP = sa.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql", "mariadb")


def upgrade() -> None:
    op.create_table(
        "job",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("worker_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
        sa.Column("updated_at", TIMESTAMP, nullable=False),
    )
    op.create_index("ix_job_model", "job", ["model"])
    op.create_index("ix_job_owner", "job", ["owner"])
    op.create_index("ix_job_status", "job", ["status"])
    op.create_index("ix_job_worker_id", "job", ["worker_id"])
    op.create_index("ix_job_created_at", "job", ["created_at"])
    op.create_index("ix_job_updated_at", "job", ["updated_at"])

    op.create_table(
        "lease",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("worker_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", TIMESTAMP, nullable=False),
    )
    op.create_index("ix_lease_job_id", "lease", ["job_id"])
    op.create_index("ix_lease_worker_id", "lease", ["worker_id"])
    op.create_index("ix_lease_created_at", "lease", ["created_at"])

    op.create_table(
        "composite_job",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("created_at", TIMESTAMP, nullable=False),
    )
    op.create_index("ix_composite_job_owner", "composite_job", ["owner"])
    op.create_index("ix_composite_job_created_at", "composite_job", ["created_at"])

    op.create_table(
        "composite_member",
        sa.Column("composite_id", sa.String(length=64), primary_key=True),
        sa.Column("job_id", sa.String(length=64), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_composite_member_job_id", "composite_member", ["job_id"])

    op.create_table(
        "worker_registration",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("worker_id", sa.String(length=255), nullable=False),
        sa.Column("cpu", sa.String(length=255), nullable=True),
        sa.Column("platform", sa.String(length=255), nullable=True),
        sa.Column("memory", sa.String(length=64), nullable=True),
        sa.Column("gpu", sa.String(length=255), nullable=True),
        sa.Column("gpu_memory", sa.String(length=64), nullable=True),
        sa.Column("registered_at", TIMESTAMP, nullable=False),
    )
    op.create_index("ix_worker_registration_worker_id", "worker_registration", ["worker_id"])
    op.create_index("ix_worker_registration_registered_at", "worker_registration", ["registered_at"])


def downgrade() -> None:
    op.drop_table("worker_registration")
    op.drop_table("composite_member")
    op.drop_table("composite_job")
    op.drop_table("lease")
    op.drop_table("job")
