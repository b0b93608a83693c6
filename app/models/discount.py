"""Discount and Discount Tier models."""
import enum
from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, DateTime, ForeignKey, Table, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class DiscountScope(str, enum.Enum):
    """What a discount's id set refers to."""
    PRODUCT = 'product'
    UNIT = 'unit'


class DiscountValueType(str, enum.Enum):
    """How a discount (or tier) value is applied."""
    PERCENTAGE = 'percentage'
    NOMINAL = 'nominal'
    TIERED = 'tiered'


discount_product = Table(
    'discount_product',
    Base.metadata,
    Column('discount_id', BigInt, ForeignKey('discount.id', ondelete='CASCADE'), primary_key=True),
    Column('product_id', BigInt, ForeignKey('product.id', ondelete='CASCADE'), primary_key=True),
)

discount_unit = Table(
    'discount_unit',
    Base.metadata,
    Column('discount_id', BigInt, ForeignKey('discount.id', ondelete='CASCADE'), primary_key=True),
    Column('unit_id', BigInt, ForeignKey('product_unit.id', ondelete='CASCADE'), primary_key=True),
)


class Discount(Base):
    """
    Discount definition scoped to a set of products or a set of units.

    `active` is the admin switch; `is_active_now` is derived from `active`
    and the optional schedule window and is persisted back on read.
    `apply_order` fixes the stacking order when several discounts match.
    """

    __tablename__ = 'discount'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_discount_tenant_name'),
    )

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    name = Column(String(200), nullable=False)
    scope_type = Column(String(20), nullable=False, default=DiscountScope.PRODUCT.value)
    value_type = Column(String(20), nullable=False, default=DiscountValueType.PERCENTAGE.value)
    value = Column(Numeric(14, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    is_active_now = Column(Boolean, nullable=False, default=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)
    apply_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    tenant = relationship('Tenant')
    products = relationship('Product', secondary=discount_product, order_by='Product.id')
    units = relationship('ProductUnit', secondary=discount_unit, order_by='ProductUnit.id')
    tiers = relationship(
        'DiscountTier',
        back_populates='discount',
        cascade='all, delete-orphan',
        order_by=lambda: [DiscountTier.priority, DiscountTier.id]
    )

    @property
    def product_ids(self):
        return [p.id for p in self.products]

    @property
    def unit_ids(self):
        return [u.id for u in self.units]

    def __repr__(self):
        return f"<Discount(id={self.id}, name='{self.name}', value_type='{self.value_type}')>"


class DiscountTier(Base):
    """
    One level of a tiered discount.

    Matches on aggregate quantity and/or amount bounds; an unset bound is
    unbounded. Tiers are replaced wholesale whenever the parent changes.
    """

    __tablename__ = 'discount_tier'
    __table_args__ = (
        Index('idx_discount_tier_discount_id_priority', 'discount_id', 'priority'),
    )

    id = Column(BigInt, primary_key=True, autoincrement=True)
    discount_id = Column(BigInt, ForeignKey('discount.id', ondelete='CASCADE'), nullable=False)
    label = Column(String(100), nullable=True)
    min_quantity = Column(Integer, nullable=True)
    max_quantity = Column(Integer, nullable=True)
    min_amount = Column(Numeric(14, 2), nullable=True)
    max_amount = Column(Numeric(14, 2), nullable=True)
    value_type = Column(String(20), nullable=False)
    value = Column(Numeric(14, 2), nullable=False, default=0)
    priority = Column(Integer, nullable=False, default=0)

    # Relationships
    discount = relationship('Discount', back_populates='tiers')

    def __repr__(self):
        return f"<DiscountTier(id={self.id}, discount_id={self.discount_id}, priority={self.priority})>"
