"""Category model."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class Category(Base):
    """Product Category."""

    __tablename__ = 'category'

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    tenant = relationship('Tenant')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at,
        }

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
