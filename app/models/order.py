"""Order and Order Item models."""
import enum
from sqlalchemy import Column, String, Text, Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class OrderStatus(str, enum.Enum):
    """Fulfilment status (stored in Indonesian)."""
    PENDING = 'menunggu'
    PROCESSING = 'diproses'
    SHIPPED = 'dikirim'
    DELIVERED = 'diterima'
    CANCELLED = 'dibatalkan'


class PaymentStatus(str, enum.Enum):
    """Payment status, loosely coupled to OrderStatus."""
    UNPAID = 'belum_bayar'
    AWAITING_CONFIRMATION = 'menunggu_konfirmasi'
    PAID = 'lunas'
    REFUNDED = 'dikembalikan'


class ShippingType(str, enum.Enum):
    DELIVERY = 'delivery'
    PICKUP = 'pickup'


class OrderSource(str, enum.Enum):
    """Where the checkout came from; only CART clears the cart."""
    CART = 'cart'
    DIRECT = 'direct'


class Order(Base):
    """Customer order; created atomically with its items."""

    __tablename__ = 'orders'

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    user_id = Column(BigInt, ForeignKey('app_user.id'), nullable=False)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_method_id = Column(BigInt, ForeignKey('payment_method.id'), nullable=False)
    payment_status = Column(String(30), nullable=False, default=PaymentStatus.UNPAID.value)
    shipping_type = Column(String(20), nullable=False, default=ShippingType.DELIVERY.value)
    shipping_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    proof_payment_path = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship('AppUser')
    payment_method = relationship('PaymentMethod')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id'
    )

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'order_number': self.order_number,
            'total_amount': float(self.total_amount or 0),
            'status': self.status,
            'payment_id': self.payment_method_id,
            'payment_status': self.payment_status,
            'payment': self.payment_method.name if self.payment_method else None,
            'no_payment': self.payment_method.account_number if self.payment_method else None,
            'shipping_type': self.shipping_type,
            'shipping_address': self.shipping_address,
            'notes': self.notes,
            'proof_payment_path': self.proof_payment_path,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Order(id={self.id}, order_number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """
    Order line with price snapshot.

    Immutable once written; catalog price changes never touch it.
    """

    __tablename__ = 'order_item'

    id = Column(BigInt, primary_key=True, autoincrement=True)
    order_id = Column(BigInt, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    unit_id = Column(BigInt, ForeignKey('product_unit.id', ondelete='SET NULL'), nullable=True)
    product_name = Column(String, nullable=False)
    unit_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total_price = Column(Numeric(14, 2), nullable=False)

    # Relationships
    order = relationship('Order', back_populates='items')

    def to_dict(self):
        return {
            'id': self.id,
            'unit_id': self.unit_id,
            'product_name': self.product_name,
            'unit_name': self.unit_name,
            'quantity': self.quantity,
            'unit_price': float(self.unit_price),
            'discount_amount': float(self.discount_amount),
            'total_price': float(self.total_price),
        }

    def __repr__(self):
        return f"<OrderItem(id={self.id}, unit_id={self.unit_id}, quantity={self.quantity})>"
