"""UserTenant model - many-to-many relationship between users and storefronts with roles."""
import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class UserRole(enum.Enum):
    """User roles within a storefront."""
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    CUSTOMER = 'CUSTOMER'


class UserTenant(Base):
    """UserTenant model - links users to storefronts with roles."""

    __tablename__ = 'user_tenant'
    __table_args__ = (
        UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant'),
    )

    id = Column(BigInt, primary_key=True, autoincrement=True)
    user_id = Column(BigInt, ForeignKey('app_user.id'), nullable=False)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    user = relationship('AppUser', back_populates='user_tenants')
    tenant = relationship('Tenant', back_populates='user_tenants')

    def __repr__(self):
        return f"<UserTenant(user_id={self.user_id}, tenant_id={self.tenant_id}, role='{self.role}')>"

    def is_owner(self):
        """Check if user is owner of the storefront."""
        return self.role == UserRole.OWNER.value

    def is_admin(self):
        """Check if user is admin or owner."""
        return self.role in [UserRole.OWNER.value, UserRole.ADMIN.value]
