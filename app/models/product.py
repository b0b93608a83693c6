"""Product model."""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class Product(Base):
    """Catalog product; sellable variants live in ProductUnit."""

    __tablename__ = 'product'

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(BigInt, ForeignKey('category.id'), nullable=True)
    image_path = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    tenant = relationship('Tenant')
    category = relationship('Category', foreign_keys=[category_id])
    units = relationship(
        'ProductUnit',
        back_populates='product',
        cascade='all, delete-orphan',
        order_by='ProductUnit.id'
    )

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}')>"
