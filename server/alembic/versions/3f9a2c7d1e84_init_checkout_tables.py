"""Init checkout tables

Revision ID: 3f9a2c7d1e84
Revises:
Create Date: 2025-06-02 18:42:10.118402

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a2c7d1e84"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


registration_status = sa.Enum(
    "pending", "completed", "cancelled", name="registration_status"
)
payment_status = sa.Enum("pending", "completed", "cancelled", name="payment_status")
payment_method = sa.Enum("stripe", "free", name="payment_method")
discount_type = sa.Enum("percentage", "fixed", name="discount_type")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "registrations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.INTEGER(), nullable=False),
        sa.Column("option", sa.VARCHAR(), nullable=False),
        sa.Column("first_name", sa.VARCHAR(), nullable=False),
        sa.Column("last_name", sa.VARCHAR(), nullable=False),
        sa.Column("email", sa.VARCHAR(), nullable=False),
        sa.Column("phone", sa.VARCHAR(), nullable=True),
        sa.Column("contact_name", sa.VARCHAR(), nullable=True),
        sa.Column("session_key", sa.VARCHAR(), nullable=True),
        sa.Column("base_price", sa.INTEGER(), nullable=False),
        sa.Column("discount_code", sa.VARCHAR(), nullable=True),
        sa.Column("discount_amount", sa.INTEGER(), nullable=False),
        sa.Column("final_price", sa.INTEGER(), nullable=False),
        sa.Column(
            "status",
            registration_status,
            nullable=False,
            server_default="pending",
        ),
        sa.Column("additional_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("confirmation_sent_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_registrations_event_id"), "registrations", ["event_id"], unique=False
    )
    op.create_index(
        op.f("ix_registrations_email"), "registrations", ["email"], unique=False
    )
    op.create_index(
        op.f("ix_registrations_session_key"),
        "registrations",
        ["session_key"],
        unique=False,
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("registration_id", sa.Uuid(), nullable=False),
        sa.Column("external_payment_intent_id", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.INTEGER(), nullable=False),
        sa.Column("currency", sa.VARCHAR(), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column(
            "status",
            payment_status,
            nullable=False,
            server_default="pending",
        ),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(
            ["registration_id"],
            ["registrations.id"],
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "external_payment_intent_id",
            name="uq_payments_external_payment_intent_id",
        ),
    )
    op.create_index(
        op.f("ix_payments_registration_id"),
        "payments",
        ["registration_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_payments_external_payment_intent_id"),
        "payments",
        ["external_payment_intent_id"],
        unique=False,
    )

    op.create_table(
        "discount_codes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.VARCHAR(), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.INTEGER(), nullable=False),
        sa.Column("description", sa.VARCHAR(), nullable=True),
        sa.Column("active", sa.BOOLEAN(), nullable=False),
        sa.Column("valid_from", sa.DateTime(), nullable=True),
        sa.Column("valid_until", sa.DateTime(), nullable=True),
        sa.Column("max_uses", sa.INTEGER(), nullable=True),
        sa.Column("current_uses", sa.INTEGER(), nullable=False),
        sa.Column("event_ids", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_discount_codes_code"), "discount_codes", ["code"], unique=True
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_discount_codes_code"), table_name="discount_codes")
    op.drop_table("discount_codes")
    op.drop_index(
        op.f("ix_payments_external_payment_intent_id"), table_name="payments"
    )
    op.drop_index(op.f("ix_payments_registration_id"), table_name="payments")
    op.drop_table("payments")
    op.drop_index(op.f("ix_registrations_session_key"), table_name="registrations")
    op.drop_index(op.f("ix_registrations_email"), table_name="registrations")
    op.drop_index(op.f("ix_registrations_event_id"), table_name="registrations")
    op.drop_table("registrations")

    bind = op.get_bind()
    for enum_type in (discount_type, payment_method, payment_status, registration_status):
        enum_type.drop(bind, checkfirst=True)
