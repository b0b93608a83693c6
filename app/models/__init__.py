"""Models package - exports all SQLAlchemy models."""
# Platform Models
from app.models.tenant import Tenant
from app.models.app_user import AppUser
from app.models.user_tenant import UserTenant, UserRole

# Catalog Models
from app.models.category import Category
from app.models.product import Product
from app.models.product_unit import ProductUnit
from app.models.discount import (
    Discount, DiscountTier, DiscountScope, DiscountValueType, discount_product, discount_unit
)

# Checkout Models
from app.models.payment_method import PaymentMethod
from app.models.cart_item import CartItem
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus, ShippingType, OrderSource

__all__ = [
    # Platform
    'Tenant', 'AppUser', 'UserTenant', 'UserRole',
    # Catalog
    'Category', 'Product', 'ProductUnit',
    'Discount', 'DiscountTier', 'DiscountScope', 'DiscountValueType', 'discount_product', 'discount_unit',
    # Checkout
    'PaymentMethod', 'CartItem',
    'Order', 'OrderItem', 'OrderStatus', 'PaymentStatus', 'ShippingType', 'OrderSource',
]
