"""Cart Item model."""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class CartItem(Base):
    """Persistent cart line; one row per (tenant, user, unit)."""

    __tablename__ = 'cart_item'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'user_id', 'unit_id', name='uq_cart_item_user_unit'),
        CheckConstraint('quantity > 0', name='ck_cart_item_quantity_positive'),
    )

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    user_id = Column(BigInt, ForeignKey('app_user.id'), nullable=False)
    unit_id = Column(BigInt, ForeignKey('product_unit.id', ondelete='CASCADE'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship('AppUser')
    unit = relationship('ProductUnit')

    def __repr__(self):
        return f"<CartItem(id={self.id}, user_id={self.user_id}, unit_id={self.unit_id}, quantity={self.quantity})>"
