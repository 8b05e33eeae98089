from .catalog import Product, StockHistory
from .carts import Cart, CartItem
from .vouchers import Voucher, VoucherUsage
from .orders import Order, OrderItem
from .payments import Payment, ReceiptJob
from .sequences import DocumentSequence

__all__ = [
    'Product', 'StockHistory',
    'Cart', 'CartItem',
    'Voucher', 'VoucherUsage',
    'Order', 'OrderItem',
    'Payment', 'ReceiptJob',
    'DocumentSequence',
]
