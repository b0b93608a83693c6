"""Product Unit model."""
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigInt


class ProductUnit(Base):
    """
    Sellable variant of a product (e.g. "Dus isi 12").

    `price` is the authoritative server-side price. `stock` is only
    decremented inside the order transaction.
    """

    __tablename__ = 'product_unit'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_unit_stock_non_negative'),
    )

    id = Column(BigInt, primary_key=True, autoincrement=True)
    product_id = Column(BigInt, ForeignKey('product.id'), nullable=False)
    unit_name = Column(String(100), nullable=False)
    qty_per_unit = Column(Numeric(10, 2), nullable=False, default=1)
    price = Column(Numeric(14, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    product = relationship('Product', back_populates='units')

    @property
    def display_name(self):
        """Product and unit label, e.g. "Teh Botol - Dus"."""
        if self.product is not None:
            return f"{self.product.name} - {self.unit_name}"
        return self.unit_name

    def __repr__(self):
        return f"<ProductUnit(id={self.id}, unit_name='{self.unit_name}', stock={self.stock})>"
