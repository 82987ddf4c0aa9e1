from .auth import User, SessionToken
from .catalog import Product
from .cart import CartItem
from .orders import Order, OrderItem, Refund
from .wallet import Wallet, WalletTransaction
from .ledger import Transaction
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'Product',
    'CartItem',
    'Order', 'OrderItem', 'Refund',
    'Wallet', 'WalletTransaction',
    'Transaction',
    'Notification',
]
