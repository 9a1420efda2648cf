"""add backup snapshot and disaster recovery drill tables

Revision ID: 0001_backup_recovery
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_backup_recovery"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Track backup attempts, their verification sub-state and retention-driven expiry.
    op.create_table(
        "backup_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("snapshot_key", sa.String(length=160), nullable=False),
        sa.Column("backup_type", sa.String(length=32), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("environment", sa.String(), nullable=False),
        sa.Column("region", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("storage_location_key", sa.String(), nullable=True),
        sa.Column("storage_class", sa.String(), nullable=True),
        sa.Column("storage_uri", sa.String(), nullable=True),
        sa.Column("checksum", sa.String(), nullable=True),
        sa.Column("checksum_algorithm", sa.String(), nullable=True),
        sa.Column("retention_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("initiated_by", sa.String(), nullable=True),
        sa.Column("initiated_from", sa.String(), nullable=True),
        sa.Column("verification_status", sa.String(length=32), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "dataset_scope",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ux_backup_snapshots_snapshot_key", "backup_snapshots", ["snapshot_key"], unique=True
    )
    op.create_index("ix_backup_snapshots_status", "backup_snapshots", ["status"], unique=False)
    op.create_index(
        "ix_backup_snapshots_environment", "backup_snapshots", ["environment"], unique=False
    )
    op.create_index("ix_backup_snapshots_started_at", "backup_snapshots", ["started_at"], unique=False)

    # Persist recovery drills with observed restore timings for readiness evidence.
    op.create_table(
        "disaster_recovery_drills",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("drill_key", sa.String(length=160), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("scenario", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("environment", sa.String(), nullable=False),
        sa.Column("region", sa.String(), nullable=True),
        sa.Column("rto_minutes", sa.Integer(), nullable=True),
        sa.Column("rpo_minutes", sa.Integer(), nullable=True),
        sa.Column("restore_duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("data_loss_seconds", sa.Integer(), nullable=True),
        sa.Column("initiated_by", sa.String(), nullable=True),
        sa.Column("initiated_from", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("restore_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("restore_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column(
            "issues_found",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("evidence_uri", sa.String(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ux_disaster_recovery_drills_drill_key",
        "disaster_recovery_drills",
        ["drill_key"],
        unique=True,
    )
    op.create_index(
        "ix_disaster_recovery_drills_status", "disaster_recovery_drills", ["status"], unique=False
    )
    op.create_index(
        "ix_disaster_recovery_drills_environment",
        "disaster_recovery_drills",
        ["environment"],
        unique=False,
    )
    op.create_index(
        "ix_disaster_recovery_drills_started_at",
        "disaster_recovery_drills",
        ["started_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_disaster_recovery_drills_started_at", table_name="disaster_recovery_drills")
    op.drop_index("ix_disaster_recovery_drills_environment", table_name="disaster_recovery_drills")
    op.drop_index("ix_disaster_recovery_drills_status", table_name="disaster_recovery_drills")
    op.drop_index("ux_disaster_recovery_drills_drill_key", table_name="disaster_recovery_drills")
    op.drop_table("disaster_recovery_drills")
    op.drop_index("ix_backup_snapshots_started_at", table_name="backup_snapshots")
    op.drop_index("ix_backup_snapshots_environment", table_name="backup_snapshots")
    op.drop_index("ix_backup_snapshots_status", table_name="backup_snapshots")
    op.drop_index("ux_backup_snapshots_snapshot_key", table_name="backup_snapshots")
    op.drop_table("backup_snapshots")
