"""
SQLAlchemy models for the storefront order tables the reconciler reads and writes.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum

# Enums. Status columns are stored as plain lowercase strings because legacy
# rows carry values outside these sets (e.g. "completed" vs "paid").
class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

TERMINAL_ORDER_STATUSES = (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value)

# Payment states for which shipments are worth polling
SETTLED_PAYMENT_STATUSES = ("paid", "completed", "confirmed")

class AdminRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"

class EmailType(str, enum.Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    ADMIN_NEW_ORDER = "admin_new_order"
    PAYMENT_FAILED = "payment_failed"
    ADMIN_PAYMENT_FAILED = "admin_payment_failed"
    ORDER_DELIVERED = "order_delivered"

SHIPROCKET_PROVIDER = "shiprocket"

# Models
class AdminUser(Base):
    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False)
    email = Column(String(255), nullable=False)
    full_name = Column("full_name", String(255), nullable=True)
    role = Column(String(20), nullable=False, default=AdminRole.STAFF.value)
    is_active = Column("is_active", Boolean, default=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column("product_id", Integer, nullable=False, index=True)
    image_url = Column("image_url", String(1024), nullable=False)
    is_primary = Column("is_primary", Boolean, default=False)
    sort_order = Column("sort_order", Integer, default=0)

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column("order_number", String(50), unique=True, nullable=False, index=True)
    customer_name = Column("customer_name", String(255), nullable=False)
    customer_email = Column("customer_email", String(255), nullable=False)
    customer_mobile = Column("customer_mobile", String(20), nullable=True)
    shipping_address_line1 = Column("shipping_address_line1", String(500), nullable=True)
    shipping_address_line2 = Column("shipping_address_line2", String(500), nullable=True)
    shipping_city = Column("shipping_city", String(100), nullable=True)
    shipping_state = Column("shipping_state", String(100), nullable=True)
    shipping_pincode = Column("shipping_pincode", String(6), nullable=True)
    product_id = Column("product_id", Integer, nullable=True)
    product_name = Column("product_name", String(255), nullable=True)
    phone_model = Column("phone_model", String(255), nullable=True)
    design_name = Column("design_name", String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column("unit_price", Numeric(10, 2), nullable=False, default=0)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_cost = Column("shipping_cost", Numeric(10, 2), nullable=False, default=0)
    total_amount = Column("total_amount", Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    customization_data = Column("customization_data", Text, nullable=True)
    payment_status = Column("payment_status", String(20), nullable=False, default=PaymentStatus.PENDING.value)
    order_status = Column("order_status", String(20), nullable=False, default=OrderStatus.PENDING.value)
    payment_method = Column("payment_method", String(50), nullable=True)
    # Gateway order id (order_<id>_<ts>), stored when the payment session is created
    payment_id = Column("payment_id", String(100), nullable=True, index=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    shipments = relationship("Shipment", back_populates="order")

class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default=SHIPROCKET_PROVIDER)
    shiprocket_order_id = Column("shiprocket_order_id", String(50), nullable=True)
    shiprocket_shipment_id = Column("shiprocket_shipment_id", String(50), nullable=True)
    shiprocket_awb = Column("shiprocket_awb", String(100), nullable=True)
    shiprocket_courier_name = Column("shiprocket_courier_name", String(255), nullable=True)
    tracking_url = Column("tracking_url", String(1024), nullable=True)
    label_url = Column("label_url", String(1024), nullable=True)
    status = Column(String(255), nullable=True)
    response_json = Column("response_json", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="shipments")

class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    email_type = Column("email_type", String(50), nullable=False)
    recipient_email = Column("recipient_email", String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False)
    error_message = Column("error_message", Text, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
