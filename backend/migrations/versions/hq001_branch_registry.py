"""Head-office branch registry

Revision ID: hq001_branch_registry
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "hq001_branch_registry"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("name_ar", sa.String(length=200), nullable=True),
        sa.Column("engine", sa.String(length=16), nullable=False, server_default="sqlite"),
        sa.Column("db_server", sa.String(length=255), nullable=True),
        sa.Column("db_port", sa.Integer(), nullable=True),
        sa.Column("db_name", sa.String(length=100), nullable=True),
        sa.Column("db_username", sa.String(length=100), nullable=True),
        sa.Column("db_password", sa.String(length=255), nullable=True),
        sa.Column("db_additional_params", sa.String(length=500), nullable=True),
        sa.Column("ssl_mode", sa.String(length=16), nullable=False, server_default="disable"),
        sa.Column("trust_server_certificate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="USD"),
        sa.Column("language", sa.String(length=10), nullable=False, server_default="en"),
        sa.Column("timezone", sa.String(length=100), nullable=False, server_default="UTC"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("code", name="uq_branches_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("branches", schema=None) as batch_op:
        batch_op.create_index("ix_branches_active", ["is_active"], unique=False)


def downgrade():
    with op.batch_alter_table("branches", schema=None) as batch_op:
        batch_op.drop_index("ix_branches_active")
    op.drop_table("branches")
