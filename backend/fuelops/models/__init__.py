from .tenancy import Location, Product
from .auth import User
from .banking import BankAccount
from .pfis import Pfi
from .orders import Order, OrderLine, ReleaseTicket
from .audit import OrderAuditEvent
from .documents import DocumentSequence

__all__ = [
    'Location', 'Product',
    'User',
    'BankAccount',
    'Pfi',
    'Order', 'OrderLine', 'ReleaseTicket',
    'OrderAuditEvent',
    'DocumentSequence',
]
