"""drafts schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Both tables as defined in app/models/database_models.py:
drafts, generation_audits.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── Enum types ────────────────────────────────────────────────────────
    draft_status = sa.Enum("pending", "processing", "completed", "failed", name="draftstatus")
    draft_status.create(op.get_bind(), checkfirst=True)

    # ── drafts ────────────────────────────────────────────────────────────
    op.create_table(
        "drafts",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("job_id", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column(
            "status",
            sa.Enum("pending", "processing", "completed", "failed", name="draftstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("draft", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── generation_audits ─────────────────────────────────────────────────
    op.create_table(
        "generation_audits",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("job_id", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("prompt_excerpt", sa.Text, nullable=True),
        sa.Column("prompt_hash", sa.String(64), nullable=True),
        sa.Column("variation_key", sa.String(64), nullable=True),
        sa.Column("observations_text", sa.Text, nullable=True),
        sa.Column("attachments_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("document_json", sa.JSON, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("generation_audits")
    op.drop_table("drafts")

    op.execute("DROP TYPE IF EXISTS draftstatus")
