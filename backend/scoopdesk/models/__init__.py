from .catalog import Category, CategorySize, Product, ProductCost, ProductSizePrice
from .cash import CashSession, CashSessionPayment, PAYMENT_METHODS, PAYMENT_METHOD_TOTAL_COLUMNS
from .customers import Customer, LoyaltyTransaction, CashbackTransaction
from .promotions import Coupon, CouponUsage
from .orders import (
    Sale, SaleItem, SalePayment, SaleAdjustment,
    Comanda, ComandaItem, ComandaPayment,
    DeliveryOrder, DeliveryItem, DeliveryPayment, DeliveryFee,
)
from .settings import LoyaltyConfig, CashbackConfig, PaymentMethodConfig
from .finance import FinancialCategory, FinancialTransaction, AccountPayable, AccountReceivable, DRE_GROUPS

__all__ = [
    'Category', 'CategorySize', 'Product', 'ProductCost', 'ProductSizePrice',
    'CashSession', 'CashSessionPayment', 'PAYMENT_METHODS', 'PAYMENT_METHOD_TOTAL_COLUMNS',
    'Customer', 'LoyaltyTransaction', 'CashbackTransaction',
    'Coupon', 'CouponUsage',
    'Sale', 'SaleItem', 'SalePayment', 'SaleAdjustment',
    'Comanda', 'ComandaItem', 'ComandaPayment',
    'DeliveryOrder', 'DeliveryItem', 'DeliveryPayment', 'DeliveryFee',
    'LoyaltyConfig', 'CashbackConfig', 'PaymentMethodConfig',
    'FinancialCategory', 'FinancialTransaction', 'AccountPayable', 'AccountReceivable', 'DRE_GROUPS',
]
