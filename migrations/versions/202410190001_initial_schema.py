"""Initial schema for registrations, payments and attendance."""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202410190001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp_columns():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    attendance_status = sa.Enum("not_checked_in", "checked_in", name="attendance_status")
    payment_status = sa.Enum(
        "pending", "paid", "expired", "failed", "cancelled", name="payment_status"
    )
    payment_fulfilment = sa.Enum(
        "awaiting_attendance", "attendance_linked", name="payment_fulfilment"
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255)),
        *_timestamp_columns(),
    )

    op.create_table(
        "event_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("slug", sa.String(length=150), nullable=False, unique=True),
        *_timestamp_columns(),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("location", sa.String(length=255)),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("event_categories.id", ondelete="SET NULL"),
        ),
        *_timestamp_columns(),
        sa.CheckConstraint("capacity >= 0", name="ck_events_capacity_non_negative"),
        sa.CheckConstraint("price >= 0", name="ck_events_price_non_negative"),
        sa.CheckConstraint("end_time >= start_time", name="ck_events_end_after_start"),
    )

    op.create_table(
        "attendances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", attendance_status, nullable=False, server_default="not_checked_in"),
        sa.Column("token_hash", sa.String(length=128)),
        sa.Column("token_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.DateTime()),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("user_id", "event_id", name="uq_attendances_user_event"),
    )
    op.create_index("ix_attendances_user_id", "attendances", ["user_id"])
    op.create_index("ix_attendances_event_id", "attendances", ["event_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "attendance_id",
            sa.Integer(),
            sa.ForeignKey("attendances.id", ondelete="SET NULL"),
            unique=True,
        ),
        sa.Column(
            "fulfilment",
            payment_fulfilment,
            nullable=False,
            server_default="awaiting_attendance",
        ),
        sa.Column("gateway_invoice_id", sa.String(length=255), unique=True),
        sa.Column("external_id", sa.String(length=255)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="IDR"),
        sa.Column("status", payment_status, nullable=False, server_default="pending"),
        sa.Column("invoice_url", sa.Text()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("expires_at", sa.DateTime()),
        *_timestamp_columns(),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_event_id", "payments", ["event_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index(
        "uq_payments_pending_event_user",
        "payments",
        ["event_id", "user_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "revoked_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("jti", sa.String(length=128), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column(
            "revoked_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("ix_revoked_tokens_expires_at", "revoked_tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_revoked_tokens_expires_at", table_name="revoked_tokens")
    op.drop_table("revoked_tokens")
    op.drop_index("uq_payments_pending_event_user", table_name="payments")
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_index("ix_payments_event_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_attendances_event_id", table_name="attendances")
    op.drop_index("ix_attendances_user_id", table_name="attendances")
    op.drop_table("attendances")
    op.drop_table("events")
    op.drop_table("event_categories")
    op.drop_table("users")

    bind = op.get_bind()
    sa.Enum(name="payment_fulfilment").drop(bind, checkfirst=True)
    sa.Enum(name="payment_status").drop(bind, checkfirst=True)
    sa.Enum(name="attendance_status").drop(bind, checkfirst=True)
