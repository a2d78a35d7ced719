"""Accounts, points ledger, rewards, redemptions, offers and notifications.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum columns persist member names.
ENUM_TYPES = {
    "points_ledger_direction": ("CREDIT", "DEBIT"),
    "reward_redemption_frequency": ("ONCE", "ONCE_PER_DAY", "ONCE_PER_WEEK", "UNLIMITED"),
    "reward_validation_type": ("PHYSICAL", "ONLINE"),
    "reward_redemption_status": ("PENDING", "REDEEMED", "USED", "EXPIRED", "CANCELLED"),
    "reward_validation_method": ("QR_SCAN", "CODE_ENTRY"),
    "special_offer_type": ("PERCENTAGE_OFF", "FIXED_AMOUNT_OFF", "FREE_ITEM", "BUY_ONE_GET_ONE", "FREE_SHIPPING"),
    "offer_redemption_status": ("PENDING", "REDEEMED", "USED", "EXPIRED", "CANCELLED"),
    "notification_channel_enum": ("IN_APP", "PUSH"),
    "notification_status_enum": ("PENDING", "SENT", "FAILED"),
}


def _enum(name: str) -> sa.dialects.postgresql.ENUM:
    return sa.dialects.postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _uuid() -> sa.dialects.postgresql.UUID:
    return sa.dialects.postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(
            f"""
            DO $$ BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END $$;
            """
        )

    op.create_table(
        "accounts",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("account_type", sa.String(length=16), nullable=False, server_default="customer"),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("push_token", sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_balance >= 0", name="ck_accounts_points_balance_non_negative"),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)

    op.create_table(
        "points_ledger_entries",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("account_id", _uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("direction", _enum("points_ledger_direction"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "account_id",
            "reference_id",
            "direction",
            name="uq_points_ledger_entries_account_reference_direction",
        ),
    )
    op.create_index("ix_points_ledger_entries_account_id", "points_ledger_entries", ["account_id"])

    op.create_table(
        "rewards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("business_id", _uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("total_available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claimed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unlimited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("redemption_frequency", _enum("reward_redemption_frequency"), nullable=False, server_default="UNLIMITED"),
        sa.Column("validation_type", _enum("reward_validation_type"), nullable=False, server_default="PHYSICAL"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_days", sa.JSON(), nullable=True),
        sa.Column("valid_time_start", sa.String(length=5), nullable=True),
        sa.Column("valid_time_end", sa.String(length=5), nullable=True),
        sa.Column("min_points_required", sa.Integer(), nullable=True),
        sa.Column("min_purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("level_required", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rewards_business_id", "rewards", ["business_id"])

    op.create_table(
        "reward_redemptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("account_id", _uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("reward_id", _uuid(), sa.ForeignKey("rewards.id"), nullable=False),
        sa.Column("business_id", _uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("reward_snapshot", sa.JSON(), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("status", _enum("reward_redemption_status"), nullable=False, server_default="PENDING"),
        sa.Column("qr_code", sa.String(), nullable=True),
        sa.Column("alphanumeric_code", sa.String(), nullable=True),
        sa.Column("validation_token", sa.String(length=64), nullable=False),
        sa.Column("validated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.String(), nullable=True),
        sa.Column("validation_method", _enum("reward_validation_method"), nullable=True),
        sa.Column("validation_ip", sa.String(), nullable=True),
        sa.Column("validation_device_id", sa.String(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_reward_redemptions_business_qr_code", "reward_redemptions", ["business_id", "qr_code"])
    op.create_index(
        "ix_reward_redemptions_business_alphanumeric_code",
        "reward_redemptions",
        ["business_id", "alphanumeric_code"],
    )
    op.create_index("ix_reward_redemptions_account_reward", "reward_redemptions", ["account_id", "reward_id"])

    op.create_table(
        "reward_validation_audit",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("redemption_id", _uuid(), sa.ForeignKey("reward_redemptions.id"), nullable=True),
        sa.Column("reward_id", _uuid(), nullable=True),
        sa.Column("account_id", _uuid(), nullable=True),
        sa.Column("business_id", _uuid(), nullable=False),
        sa.Column("validated_by", sa.String(), nullable=True),
        sa.Column("validation_method", _enum("reward_validation_method"), nullable=True),
        sa.Column("code", sa.String(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("device_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_reward_validation_audit_business_id", "reward_validation_audit", ["business_id"])

    op.create_table(
        "special_offers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("business_id", _uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("offer_type", _enum("special_offer_type"), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("offer_code", sa.String(length=64), nullable=False),
        sa.Column("min_purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_redemptions_total", sa.Integer(), nullable=True),
        sa.Column("max_redemptions_per_user", sa.Integer(), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_redemptions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reward_points", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "offer_code", name="uq_special_offers_business_code"),
    )
    op.create_index("ix_special_offers_business_id", "special_offers", ["business_id"])

    op.create_table(
        "offer_redemptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("offer_id", _uuid(), sa.ForeignKey("special_offers.id"), nullable=False),
        sa.Column("offer_code", sa.String(length=64), nullable=False),
        sa.Column("business_id", _uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("account_id", _uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("status", _enum("offer_redemption_status"), nullable=False, server_default="REDEEMED"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("order_number", sa.String(), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_awarded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_offer_redemptions_offer_id", "offer_redemptions", ["offer_id"])
    op.create_index("ix_offer_redemptions_business_id", "offer_redemptions", ["business_id"])
    op.create_index("ix_offer_redemptions_account_id", "offer_redemptions", ["account_id"])

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("account_id", _uuid(), sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("channel", _enum("notification_channel_enum"), nullable=False, server_default="IN_APP"),
        sa.Column("status", _enum("notification_status_enum"), nullable=False, server_default="PENDING"),
        sa.Column("notification_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("link", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_account_id", "notifications", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_account_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_offer_redemptions_account_id", table_name="offer_redemptions")
    op.drop_index("ix_offer_redemptions_business_id", table_name="offer_redemptions")
    op.drop_index("ix_offer_redemptions_offer_id", table_name="offer_redemptions")
    op.drop_table("offer_redemptions")
    op.drop_index("ix_special_offers_business_id", table_name="special_offers")
    op.drop_table("special_offers")
    op.drop_index("ix_reward_validation_audit_business_id", table_name="reward_validation_audit")
    op.drop_table("reward_validation_audit")
    op.drop_index("ix_reward_redemptions_account_reward", table_name="reward_redemptions")
    op.drop_index("ix_reward_redemptions_business_alphanumeric_code", table_name="reward_redemptions")
    op.drop_index("ix_reward_redemptions_business_qr_code", table_name="reward_redemptions")
    op.drop_table("reward_redemptions")
    op.drop_index("ix_rewards_business_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_points_ledger_entries_account_id", table_name="points_ledger_entries")
    op.drop_table("points_ledger_entries")
    op.drop_index("ix_accounts_email", table_name="accounts")
    op.drop_table("accounts")
    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
