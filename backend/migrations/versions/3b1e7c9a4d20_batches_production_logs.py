"""pre-processing batches + production logs

Revision ID: 3b1e7c9a4d20
Revises:
Create Date: 2026-10-19 09:12:41.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1e7c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names()


def _index_exists(bind, table: str, name: str) -> bool:
    insp = sa.inspect(bind)
    for ix in insp.get_indexes(table_name=table):
        if ix.get("name") in {name, op.f(name)}:
            return True
    return False


def _create_index(bind, name: str, table: str, cols, unique: bool = False) -> None:
    if not _index_exists(bind, table, name):
        op.create_index(op.f(name), table, cols, unique=unique)


def upgrade() -> None:
    """Create required tables/indexes if they don't already exist."""
    bind = op.get_bind()

    # ---- BATCHES ----
    if not _table_exists(bind, "pre_processing_batches"):
        op.create_table(
            "pre_processing_batches",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("company_id", sa.String(length=64), nullable=False),
            sa.Column("batch_number", sa.String(length=64), nullable=False),
            sa.Column("production_order_id", sa.String(length=64), nullable=True),
            sa.Column("production_order_number", sa.String(length=64), nullable=True),
            sa.Column("inward_id", sa.String(length=64), nullable=True),
            sa.Column("grn_number", sa.String(length=64), nullable=True),
            sa.Column("process_type", sa.String(length=32), nullable=False),
            sa.Column("process_name", sa.String(length=255), nullable=False),
            sa.Column("process_description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("progress", sa.Integer(), nullable=False),
            sa.Column("planned_start_time", sa.DateTime(), nullable=True),
            sa.Column("actual_start_time", sa.DateTime(), nullable=True),
            sa.Column("planned_end_time", sa.DateTime(), nullable=True),
            sa.Column("actual_end_time", sa.DateTime(), nullable=True),
            sa.Column("planned_duration", sa.Integer(), nullable=True),
            sa.Column("actual_duration", sa.Integer(), nullable=True),
            sa.Column("setup_time", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("cleaning_time", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("downtime", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reason_for_delay", sa.String(length=1000), nullable=True),
            sa.Column("hold_started_at", sa.DateTime(), nullable=True),
            sa.Column("status_changed_at", sa.DateTime(), nullable=True),
            sa.Column("input_materials", sa.JSON(), nullable=True),
            sa.Column("process_parameters", sa.JSON(), nullable=True),
            sa.Column("machine_assignment", sa.JSON(), nullable=True),
            sa.Column("quality_control", sa.JSON(), nullable=True),
            sa.Column("costs", sa.JSON(), nullable=True),
            sa.Column("efficiency", sa.Float(), nullable=True),
            sa.Column("total_cost", sa.Float(), nullable=True),
            sa.Column("status_change_log", sa.JSON(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("special_instructions", sa.Text(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("created_by_name", sa.String(length=255), nullable=True),
            sa.Column("updated_by", sa.String(length=64), nullable=True),
            sa.Column("updated_by_name", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pre_processing_batches_pkey"),
        )
    _create_index(bind, "ix_pre_processing_batches_id", "pre_processing_batches", ["id"])
    _create_index(bind, "ix_pre_processing_batches_batch_number", "pre_processing_batches", ["batch_number"], unique=True)
    _create_index(bind, "ix_pre_processing_batches_company_id", "pre_processing_batches", ["company_id"])
    _create_index(bind, "ix_pre_processing_batches_status", "pre_processing_batches", ["status"])
    _create_index(bind, "ix_pre_processing_batches_process_type", "pre_processing_batches", ["process_type"])
    _create_index(bind, "ix_pre_processing_batches_production_order_id", "pre_processing_batches", ["production_order_id"])
    _create_index(bind, "ix_pre_processing_batches_created_at", "pre_processing_batches", ["created_at"])
    _create_index(bind, "ix_pre_processing_batches_company_created", "pre_processing_batches", ["company_id", "created_at"])

    # ---- PRODUCTION LOGS ----
    if not _table_exists(bind, "production_logs"):
        op.create_table(
            "production_logs",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("company_id", sa.String(length=64), nullable=False),
            sa.Column("log_type", sa.String(length=32), nullable=False),
            sa.Column("production_stage", sa.String(length=32), nullable=False),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=64), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("entity_name", sa.String(length=128), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("user_name", sa.String(length=255), nullable=False),
            sa.Column("user_email", sa.String(length=255), nullable=True),
            sa.Column("user_role", sa.String(length=64), nullable=True),
            sa.Column("status_change", sa.JSON(), nullable=True),
            sa.Column("changes", sa.JSON(), nullable=True),
            sa.Column("production_data", sa.JSON(), nullable=True),
            sa.Column("request_info", sa.JSON(), nullable=True),
            sa.Column("log_metadata", sa.JSON(), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False),
            sa.Column("priority", sa.String(length=16), nullable=False),
            sa.Column("timestamp", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.PrimaryKeyConstraint("id", name="production_logs_pkey"),
        )
    for col in ("company_id", "log_type", "production_stage", "action", "entity_name",
                "user_id", "timestamp", "expires_at"):
        _create_index(bind, f"ix_production_logs_{col}", "production_logs", [col])
    _create_index(bind, "ix_production_logs_entity", "production_logs", ["entity_type", "entity_id", "timestamp"])
    _create_index(bind, "ix_production_logs_type_stage", "production_logs", ["log_type", "production_stage", "timestamp"])
    _create_index(bind, "ix_production_logs_flags", "production_logs", ["is_read", "is_archived", "timestamp"])


def downgrade() -> None:
    op.drop_table("production_logs")
    op.drop_table("pre_processing_batches")
