"""create users, vm_types, vms and vm_requests

Revision ID: 3f1c9a2b7d40
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f1c9a2b7d40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # owned by the identity subsystem, created here so foreign keys resolve
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="student"),
    )

    op.create_table(
        "vm_types",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("os_type", sa.String(), nullable=False),
        sa.Column("iso_path", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "vms",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("internal_name", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="creating"),
        sa.Column("os_type", sa.String(), nullable=True),
        sa.Column("disk_path", sa.String(), nullable=False, unique=True),
        sa.Column("memory", sa.Integer(), nullable=False),
        sa.Column("vcpus", sa.Integer(), nullable=False),
        sa.Column("storage", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("vm_type_id", sa.String(36), sa.ForeignKey("vm_types.id"), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_vms_internal_name", "vms", ["internal_name"], unique=True)

    op.create_table(
        "vm_requests",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("purpose", sa.String(), nullable=False),
        sa.Column("course", sa.String(), nullable=True),
        sa.Column("duration", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("memory", sa.Integer(), nullable=True),
        sa.Column("vcpus", sa.Integer(), nullable=True),
        sa.Column("storage", sa.Integer(), nullable=True),
        sa.Column("os_type", sa.String(), nullable=True),
        sa.Column("vm_type_id", sa.String(36), sa.ForeignKey("vm_types.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("response_message", sa.Text(), nullable=True),
        sa.Column("vm_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_vm_requests_user_id", "vm_requests", ["user_id"])
    op.create_index("ix_vm_requests_status", "vm_requests", ["status"])


def downgrade():
    op.drop_index("ix_vm_requests_status", table_name="vm_requests")
    op.drop_index("ix_vm_requests_user_id", table_name="vm_requests")
    op.drop_table("vm_requests")
    op.drop_index("ix_vms_internal_name", table_name="vms")
    op.drop_table("vms")
    op.drop_table("vm_types")
    op.drop_table("users")
