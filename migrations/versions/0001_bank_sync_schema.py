"""Bank sync schema: ibans, movements, bank_transactions."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_bank_sync_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    sync_frequency_enum = sa.Enum("hourly", "daily", "weekly", name="sync_frequency_enum")
    movement_type_enum = sa.Enum("income", "expense", name="movement_type_enum")
    verification_status_enum = sa.Enum(
        "unverified",
        "partially_matched",
        "matched",
        name="verification_status_enum",
    )

    op.create_table(
        "ibans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("iban", sa.String(length=34), nullable=False),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("api_provider", sa.String(length=50), nullable=True),
        sa.Column("api_credentials", postgresql.JSONB(), nullable=True),
        sa.Column("sandbox_mode", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("auto_sync_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sync_frequency", sync_frequency_enum, nullable=False, server_default="daily"),
        sa.Column("last_sync_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "movements",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("iban_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("ibans.id"), nullable=True),
        sa.Column("type", movement_type_enum, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("flow_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=True),
        sa.Column("document_number", sa.String(length=100), nullable=True),
        sa.Column(
            "verification_status",
            verification_status_enum,
            nullable=False,
            server_default="unverified",
        ),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("bank_transaction_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("match_score", sa.Numeric(5, 2), nullable=True),
        sa.Column("last_verification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_movements_iban_id", "movements", ["iban_id"])
    op.create_index("ix_movements_flow_date", "movements", ["flow_date"])

    op.create_table(
        "bank_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "iban_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("ibans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_transaction_id", sa.String(length=255), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("value_date", sa.Date(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("balance", sa.Numeric(14, 2), nullable=True),
        sa.Column("creditor_name", sa.String(length=255), nullable=True),
        sa.Column("debtor_name", sa.String(length=255), nullable=True),
        sa.Column("remittance_info", sa.Text(), nullable=True),
        sa.Column("purpose_code", sa.String(length=35), nullable=True),
        sa.Column("end_to_end_id", sa.String(length=100), nullable=True),
        sa.Column("is_matched", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "movement_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("movements.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=True),
        sa.Column("raw_payload_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "iban_id",
            "external_transaction_id",
            name="uq_bank_transactions_iban_external_id",
        ),
    )
    op.create_index("ix_bank_transactions_iban_id", "bank_transactions", ["iban_id"])
    op.create_index("ix_bank_transactions_booking_date", "bank_transactions", ["booking_date"])


def downgrade() -> None:
    op.drop_index("ix_bank_transactions_booking_date", table_name="bank_transactions")
    op.drop_index("ix_bank_transactions_iban_id", table_name="bank_transactions")
    op.drop_table("bank_transactions")
    op.drop_index("ix_movements_flow_date", table_name="movements")
    op.drop_index("ix_movements_iban_id", table_name="movements")
    op.drop_table("movements")
    op.drop_table("ibans")

    sa.Enum(name="verification_status_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="movement_type_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="sync_frequency_enum").drop(op.get_bind(), checkfirst=True)
