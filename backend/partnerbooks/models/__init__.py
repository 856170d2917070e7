from .tenancy import Organization
from .auth import User, Role, UserRole, SessionToken
from .security import SecurityEvent
from .ledger import Partner, Transaction
from .sales import CostEntry, Sale, Allocation
from .receipts import Receipt

__all__ = [
    'Organization',
    'User', 'Role', 'UserRole', 'SessionToken',
    'SecurityEvent',
    'Partner', 'Transaction',
    'CostEntry', 'Sale', 'Allocation',
    'Receipt',
]
