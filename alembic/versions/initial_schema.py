"""Initial schema: admin_users, product_images, orders, shipments, email_logs.

Revision ID: initial_schema
Revises:
Create Date: 2026-10-19

Tables are created only if missing, so this can be stamped onto the existing
storefront database.
"""
from alembic import op
import sqlalchemy as sa


revision = "initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    tables = set(inspector.get_table_names())

    if "admin_users" not in tables:
        op.create_table(
            "admin_users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("username", sa.String(length=100), nullable=False, unique=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="staff"),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )

    if "product_images" not in tables:
        op.create_table(
            "product_images",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("image_url", sa.String(length=1024), nullable=False),
            sa.Column("is_primary", sa.Boolean(), server_default=sa.false()),
            sa.Column("sort_order", sa.Integer(), server_default="0"),
        )
        op.create_index("ix_product_images_product_id", "product_images", ["product_id"])

    if "orders" not in tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("order_number", sa.String(length=50), nullable=False, unique=True),
            sa.Column("customer_name", sa.String(length=255), nullable=False),
            sa.Column("customer_email", sa.String(length=255), nullable=False),
            sa.Column("customer_mobile", sa.String(length=20), nullable=True),
            sa.Column("shipping_address_line1", sa.String(length=500), nullable=True),
            sa.Column("shipping_address_line2", sa.String(length=500), nullable=True),
            sa.Column("shipping_city", sa.String(length=100), nullable=True),
            sa.Column("shipping_state", sa.String(length=100), nullable=True),
            sa.Column("shipping_pincode", sa.String(length=6), nullable=True),
            sa.Column("product_id", sa.Integer(), nullable=True),
            sa.Column("product_name", sa.String(length=255), nullable=True),
            sa.Column("phone_model", sa.String(length=255), nullable=True),
            sa.Column("design_name", sa.String(length=255), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("subtotal", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("customization_data", sa.Text(), nullable=True),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("order_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=50), nullable=True),
            sa.Column("payment_id", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index("ix_orders_order_number", "orders", ["order_number"])
        op.create_index("ix_orders_payment_id", "orders", ["payment_id"])

    if "shipments" not in tables:
        op.create_table(
            "shipments",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
            sa.Column("provider", sa.String(length=50), nullable=False, server_default="shiprocket"),
            sa.Column("shiprocket_order_id", sa.String(length=50), nullable=True),
            sa.Column("shiprocket_shipment_id", sa.String(length=50), nullable=True),
            sa.Column("shiprocket_awb", sa.String(length=100), nullable=True),
            sa.Column("shiprocket_courier_name", sa.String(length=255), nullable=True),
            sa.Column("tracking_url", sa.String(length=1024), nullable=True),
            sa.Column("label_url", sa.String(length=1024), nullable=True),
            sa.Column("status", sa.String(length=255), nullable=True),
            sa.Column("response_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index("ix_shipments_order_id", "shipments", ["order_id"])

    if "email_logs" not in tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=True),
            sa.Column("email_type", sa.String(length=50), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index("ix_email_logs_order_id", "email_logs", ["order_id"])


def downgrade() -> None:
    op.drop_table("email_logs")
    op.drop_table("shipments")
    op.drop_table("orders")
    op.drop_table("product_images")
    op.drop_table("admin_users")
