"""Create tenant, sale, campaign and cashback ledger tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)

accumulation_type = sa.Enum("fixed", "percentage", name="cashback_accumulation_type")
redemption_limit_type = sa.Enum("fixed", "percentage", name="cashback_redemption_limit_type")
campaign_rule_type = sa.Enum("fixed", "percentage", name="campaign_cashback_rule_type")
expiration_measure = sa.Enum("days", "weeks", "months", "years", name="campaign_cashback_expiration_measure")
transaction_type = sa.Enum(
    "accumulation", "redemption", "cancellation", "expiration", name="cashback_transaction_type"
)
transaction_status = sa.Enum("active", "consumed", "expired", name="cashback_transaction_status")
sale_status = sa.Enum("completed", "canceled", name="sale_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("document", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "sellers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("operator_password", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "operator_password", name="uq_sellers_org_operator_password"),
    )
    op.create_index("ix_sellers_organization_id", "sellers", ["organization_id"])

    op.create_table(
        "organization_members",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seller_id", UUID, sa.ForeignKey("sellers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )

    op.create_table(
        "clients",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("first_sale_id", UUID, nullable=True),
        sa.Column("first_sale_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sale_id", UUID, nullable=True),
        sa.Column("last_sale_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("purchase_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purchase_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_clients_organization_id", "clients", ["organization_id"])

    op.create_table(
        "sales",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", UUID, sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seller_id", UUID, sa.ForeignKey("sellers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("total_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sale_status, nullable=False, server_default="completed"),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_organization_id", "sales", ["organization_id"])
    op.create_index("ix_sales_client_id", "sales", ["client_id"])

    op.create_table(
        "campaigns",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cashback_generation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cashback_generation_type", campaign_rule_type, nullable=True),
        sa.Column("cashback_generation_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("cashback_expiration_measure", expiration_measure, nullable=True),
        sa.Column("cashback_expiration_value", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_campaigns_organization_id", "campaigns", ["organization_id"])

    op.create_table(
        "cashback_programs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("accumulation_type", accumulation_type, nullable=False),
        sa.Column("accumulation_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("minimum_sale_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expiration_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("redemption_limit_type", redemption_limit_type, nullable=True),
        sa.Column("redemption_limit_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("allow_integration_accumulation", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", name="uq_cashback_programs_organization_id"),
    )

    op.create_table(
        "cashback_program_prizes",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("program_id", UUID, sa.ForeignKey("cashback_programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("value", sa.Numeric(14, 2), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_cashback_program_prizes_program_id", "cashback_program_prizes", ["program_id"])

    op.create_table(
        "cashback_balances",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", UUID, sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("program_id", UUID, sa.ForeignKey("cashback_programs.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("available_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("accumulated_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("redeemed_total", sa.Numeric(14, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id",
            "client_id",
            "program_id",
            name="uq_cashback_balances_org_client_program",
        ),
    )
    op.create_index("ix_cashback_balances_client_id", "cashback_balances", ["client_id"])

    op.create_table(
        "cashback_transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", UUID, sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("program_id", UUID, sa.ForeignKey("cashback_programs.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("status", transaction_status, nullable=False, server_default="active"),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("remaining_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("sale_id", UUID, sa.ForeignKey("sales.id", ondelete="SET NULL"), nullable=True),
        sa.Column("sale_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("operator_user_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("operator_seller_id", UUID, sa.ForeignKey("sellers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_cashback_transactions_sale_type",
        "cashback_transactions",
        ["sale_id", "transaction_type"],
    )
    op.create_index(
        "ix_cashback_transactions_client_program",
        "cashback_transactions",
        ["organization_id", "client_id", "program_id"],
    )
    op.create_index(
        "ix_cashback_transactions_status_expires",
        "cashback_transactions",
        ["status", "expires_at"],
    )

    op.create_table(
        "interactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("organization_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", UUID, sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "cashback_transaction_id",
            UUID,
            sa.ForeignKey("cashback_transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("interaction_type", sa.String(), nullable=False, server_default="message"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_interactions_organization_id", "interactions", ["organization_id"])
    op.create_index("ix_interactions_client_id", "interactions", ["client_id"])
    op.create_index("ix_interactions_cashback_transaction_id", "interactions", ["cashback_transaction_id"])


def downgrade() -> None:
    op.drop_table("interactions")
    op.drop_table("cashback_transactions")
    op.drop_table("cashback_balances")
    op.drop_table("cashback_program_prizes")
    op.drop_table("cashback_programs")
    op.drop_table("campaigns")
    op.drop_table("sales")
    op.drop_table("clients")
    op.drop_table("organization_members")
    op.drop_table("sellers")
    op.drop_table("users")
    op.drop_table("organizations")

    bind = op.get_bind()
    for enum in (
        sale_status,
        transaction_status,
        transaction_type,
        expiration_measure,
        campaign_rule_type,
        redemption_limit_type,
        accumulation_type,
    ):
        enum.drop(bind, checkfirst=True)
