"""Payment Method model."""
from sqlalchemy import Column, String, ForeignKey
from app.database import Base, BigInt


class PaymentMethod(Base):
    """Payment channel offered by a storefront (cash, bank transfer, QRIS...)."""

    __tablename__ = 'payment_method'

    id = Column(BigInt, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInt, ForeignKey('tenant.id'), nullable=False)
    name = Column(String(100), nullable=False)
    account_number = Column(String(50), nullable=True)
    image_path = Column(String(255), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'account_number': self.account_number,
            'no_payment': self.account_number,
            'image_path': self.image_path,
        }

    def __repr__(self):
        return f"<PaymentMethod(id={self.id}, name='{self.name}')>"
