"""funding core: users, timelines, wallets, receipts, papers, notifications, audit, idempotency

Revision ID: 0001_funding_core
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_funding_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def _user_fk(name, nullable=False):
    return sa.Column(name, sa.String(length=64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=nullable)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=256), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "funding_timelines",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk("startup_id"),
        _user_fk("agency_id"),
        sa.Column("proposed_by_role", sa.String(length=32), nullable=False),
        sa.Column("is_accepted", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("stages_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column(
            "contingency_forms_json",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_funding_timelines_pair", "funding_timelines", ["startup_id", "agency_id"])
    op.create_index("ix_funding_timelines_agency", "funding_timelines", ["agency_id"])
    op.create_index(
        "uq_funding_timelines_live_pair",
        "funding_timelines",
        ["startup_id", "agency_id"],
        unique=True,
        postgresql_where=sa.text("is_accepted IN ('pending', 'accepted')"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_nonnegative"),
    )

    op.create_table(
        "wallet_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "wallet_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("wallets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("entry_type", sa.String(length=8), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=False),
        sa.Column("counterparty_user_id", sa.String(length=64), nullable=True),
        sa.Column("prev_hash", sa.String(length=128), nullable=False),
        sa.Column("entry_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
        sa.UniqueConstraint("wallet_id", "seq", name="uq_wallet_entries_seq"),
    )
    op.create_index("ix_wallet_entries_reference", "wallet_entries", ["reference"])

    op.create_table(
        "transfer_receipts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=False, unique=True),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("sender_balance_after", sa.BigInteger(), nullable=False),
        sa.Column("receiver_balance_after", sa.BigInteger(), nullable=False),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
    )
    op.create_index("ix_transfer_receipts_sender", "transfer_receipts", ["sender_id"])
    op.create_index("ix_transfer_receipts_receiver", "transfer_receipts", ["receiver_id"])

    op.create_table(
        "research_papers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk("researcher_id"),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False, server_default="0"),
        _created_at(),
        sa.CheckConstraint("price >= 0", name="ck_research_papers_price_nonnegative"),
    )

    op.create_table(
        "paper_access",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk("user_id"),
        sa.Column(
            "paper_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("research_papers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("access_type", sa.String(length=16), nullable=False, server_default="purchased"),
        sa.Column("reference", sa.String(length=64), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "paper_id", name="uq_paper_access_user_paper"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk("user_id"),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("message", sa.String(length=1024), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("subject_type", sa.String(length=32), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("actor_participant_id", sa.String(length=64), nullable=True),
        sa.Column("actor_role", sa.String(length=32), nullable=True),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("details_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
    )
    op.create_index("ix_audit_subject", "audit_logs", ["subject_type", "subject_id"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "idempotency_key_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("participant_id", sa.String(length=64), nullable=False),
        sa.Column("endpoint_key", sa.String(length=160), nullable=False),
        sa.Column("idem_key", sa.String(length=128), nullable=False),
        sa.Column("request_hash", sa.String(length=128), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("response_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
        sa.UniqueConstraint("participant_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
    )
    op.create_index("ix_idem_lookup", "idempotency_key_records", ["participant_id", "endpoint_key"])


def downgrade():
    op.drop_table("idempotency_key_records")
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("paper_access")
    op.drop_table("research_papers")
    op.drop_table("transfer_receipts")
    op.drop_table("wallet_entries")
    op.drop_table("wallets")
    op.drop_index("uq_funding_timelines_live_pair", table_name="funding_timelines")
    op.drop_table("funding_timelines")
    op.drop_table("users")
