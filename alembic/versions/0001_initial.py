from __future__ import annotations

from alembic import op
import sqlalchemy as sa
import sqlmodel

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

AFE_STATUS = sa.Enum(
    "DRAFT", "PENDING", "PARTIALLY_SIGNED", "FULLY_SIGNED", "REJECTED", "CANCELLED", name="afestatus"
)
SIGNER_STATUS = sa.Enum("PENDING", "ACTIVE", "SIGNED", "REJECTED", "SKIPPED", name="signerstatus")
USER_ROLE = sa.Enum("ADMIN", "SIGNER", "VIEWER", name="userrole")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def _box(prefix: str) -> list[sa.Column]:
    return [sa.Column(f"{prefix}_{axis}", sa.Float(), nullable=True) for axis in ("x", "y", "width", "height")]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column("email", sqlmodel.AutoString(), nullable=False),
        sa.Column("full_name", sqlmodel.AutoString(), nullable=False),
        sa.Column("title", sqlmodel.AutoString(length=255), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("external_id", sqlmodel.AutoString(length=255), nullable=True),
        sa.Column("signature_image", sqlmodel.AutoString(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_external_id", "users", ["external_id"])

    op.create_table(
        "afes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column("name", sqlmodel.AutoString(length=255), nullable=False),
        sa.Column("afe_number", sqlmodel.AutoString(length=100), nullable=True),
        sa.Column("status", AFE_STATUS, nullable=False),
        sa.Column("original_pdf_url", sqlmodel.AutoString(), nullable=False),
        sa.Column("final_pdf_url", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_afes_id", "afes", ["id"])
    op.create_index("ix_afes_afe_number", "afes", ["afe_number"])
    op.create_index("ix_afes_status", "afes", ["status"])
    op.create_index("ix_afes_created_by_id", "afes", ["created_by_id"])

    op.create_table(
        "afe_signers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column("afe_id", sa.Uuid(), sa.ForeignKey("afes.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("signing_order", sa.Integer(), nullable=False),
        sa.Column("status", SIGNER_STATUS, nullable=False),
        *_box("signature"),
        *_box("title"),
        *_box("date"),
        sa.Column("signature_image", sqlmodel.AutoString(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sqlmodel.AutoString(length=64), nullable=True),
        sa.Column("user_agent", sqlmodel.AutoString(), nullable=True),
        sa.Column("reject_reason", sqlmodel.AutoString(length=1000), nullable=True),
        sa.UniqueConstraint("afe_id", "signing_order", name="uq_afe_signers_afe_order"),
    )
    op.create_index("ix_afe_signers_id", "afe_signers", ["id"])
    op.create_index("ix_afe_signers_afe_id", "afe_signers", ["afe_id"])
    op.create_index("ix_afe_signers_user_id", "afe_signers", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_timestamps(),
        sa.Column("entity_type", sqlmodel.AutoString(), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sqlmodel.AutoString(), nullable=False),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("ip_address", sqlmodel.AutoString(), nullable=True),
        sa.Column("user_agent", sqlmodel.AutoString(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("afe_signers")
    op.drop_table("afes")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in (AFE_STATUS, SIGNER_STATUS, USER_ROLE):
        enum.drop(bind, checkfirst=True)
