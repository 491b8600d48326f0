"""storefront baseline: accounts, checkout mirror, purchases, carts, course progress

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENTITLING_STATUS_CLAUSE = sa.text("status IN ('completed', 'paid')")


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _create_index_if_missing(
    inspector: sa.Inspector,
    table_name: str,
    index_name: str,
    columns: list,
    **kwargs,
) -> None:
    if not _index_exists(inspector, table_name, index_name):
        op.create_index(index_name, table_name, columns, **kwargs)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "refresh_tokens"):
        op.create_table(
            "refresh_tokens",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("token_jti", sa.String(length=36), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("replaced_by_jti", sa.String(length=36), nullable=True),
            sa.Column("created_by_ip", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "checkout_sessions"):
        op.create_table(
            "checkout_sessions",
            sa.Column("id", sa.String(length=255), nullable=False),
            sa.Column("customer_email", sa.String(length=255), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
            sa.Column("original_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("discount_code", sa.String(length=64), nullable=True),
            sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("payment_provider", sa.String(length=40), nullable=False, server_default="stripe"),
            sa.Column("checkout_url", sa.String(length=1000), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "checkout_session_items"):
        op.create_table(
            "checkout_session_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("checkout_session_id", sa.String(length=255), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.String(length=120), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=80), nullable=True),
            sa.ForeignKeyConstraint(["checkout_session_id"], ["checkout_sessions.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "payment_webhook_events"):
        op.create_table(
            "payment_webhook_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=40), nullable=False),
            sa.Column("event_id", sa.String(length=255), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("checkout_session_id", sa.String(length=255), nullable=True),
            sa.Column("payload_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "purchases"):
        op.create_table(
            "purchases",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("customer_email", sa.String(length=255), nullable=True),
            sa.Column("owner_key", sa.String(length=300), nullable=False),
            sa.Column("product_id", sa.String(length=120), nullable=False),
            sa.Column("product_title", sa.String(length=255), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="usd"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
            sa.Column("checkout_session_id", sa.String(length=255), nullable=True),
            sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(
                "user_id IS NOT NULL OR customer_email IS NOT NULL",
                name="ck_purchases_owner_present",
            ),
            sa.CheckConstraint("amount >= 0", name="ck_purchases_amount_non_negative"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "cart_items"):
        op.create_table(
            "cart_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=120), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=80), nullable=True),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        )

    if not _table_exists(inspector, "course_progress"):
        op.create_table(
            "course_progress",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("course_id", sa.String(length=120), nullable=False),
            sa.Column("lesson_id", sa.String(length=40), nullable=False),
            sa.Column("completed", sa.Boolean(), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "user_id",
                "course_id",
                "lesson_id",
                name="uq_course_progress_user_course_lesson",
            ),
        )

    inspector = sa.inspect(bind)
    _create_index_if_missing(inspector, "users", "ix_users_email", ["email"], unique=True)
    _create_index_if_missing(inspector, "users", "ux_users_email_lower", [sa.text("lower(email)")], unique=True)

    _create_index_if_missing(inspector, "refresh_tokens", "ix_refresh_tokens_user_id", ["user_id"])
    _create_index_if_missing(inspector, "refresh_tokens", "ix_refresh_tokens_token_jti", ["token_jti"], unique=True)
    _create_index_if_missing(
        inspector,
        "refresh_tokens",
        "ix_refresh_tokens_user_revoked_expires",
        ["user_id", "revoked_at", "expires_at"],
    )

    _create_index_if_missing(inspector, "checkout_sessions", "ix_checkout_sessions_customer_email", ["customer_email"])
    _create_index_if_missing(inspector, "checkout_sessions", "ix_checkout_sessions_user_id", ["user_id"])
    _create_index_if_missing(
        inspector,
        "checkout_sessions",
        "ix_checkout_sessions_status_created_at",
        ["status", "created_at"],
    )
    _create_index_if_missing(
        inspector,
        "checkout_session_items",
        "ix_checkout_session_items_checkout_session_id",
        ["checkout_session_id"],
    )

    _create_index_if_missing(inspector, "payment_webhook_events", "ix_payment_webhook_events_provider", ["provider"])
    _create_index_if_missing(
        inspector,
        "payment_webhook_events",
        "ix_payment_webhook_events_event_id",
        ["event_id"],
        unique=True,
    )
    _create_index_if_missing(
        inspector,
        "payment_webhook_events",
        "ix_payment_webhook_events_checkout_session_id",
        ["checkout_session_id"],
    )
    _create_index_if_missing(
        inspector,
        "payment_webhook_events",
        "ix_payment_webhook_events_provider_created_at",
        ["provider", "created_at"],
    )

    _create_index_if_missing(inspector, "purchases", "ix_purchases_user_id", ["user_id"])
    _create_index_if_missing(inspector, "purchases", "ix_purchases_customer_email", ["customer_email"])
    _create_index_if_missing(inspector, "purchases", "ix_purchases_product_id", ["product_id"])
    _create_index_if_missing(inspector, "purchases", "ix_purchases_checkout_session_id", ["checkout_session_id"])
    _create_index_if_missing(inspector, "purchases", "ix_purchases_product_status", ["product_id", "status"])
    # At most one entitling purchase per product and owner; reconciliation relies on it.
    _create_index_if_missing(
        inspector,
        "purchases",
        "ux_purchases_product_owner_entitled",
        ["product_id", "owner_key"],
        unique=True,
        postgresql_where=ENTITLING_STATUS_CLAUSE,
        sqlite_where=ENTITLING_STATUS_CLAUSE,
    )

    _create_index_if_missing(inspector, "cart_items", "ix_cart_items_user_id", ["user_id"])
    _create_index_if_missing(inspector, "course_progress", "ix_course_progress_user_id", ["user_id"])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "course_progress",
        "cart_items",
        "purchases",
        "payment_webhook_events",
        "checkout_session_items",
        "checkout_sessions",
        "refresh_tokens",
        "users",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
