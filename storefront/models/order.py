"""
Read models for tables owned by the checkout and customer services.
Only the columns the discount engine reads are mapped.
"""

from sqlalchemy import Column, String, Numeric, DateTime, JSON, Index

from .base import Base, utcnow

class PaymentStatus:
    """Payment status values written by the checkout service"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

class Order(Base):
    """Customer order"""

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=True, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_orders_user_payment", "user_id", "payment_status"),
    )

class Customer(Base):
    """Customer profile with marketing segment tags"""

    __tablename__ = "customers"

    id = Column(String(64), primary_key=True)
    segments = Column(JSON, nullable=True)
