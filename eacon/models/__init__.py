"""Import all models so Base.metadata knows every table."""
from eacon.models.audit_log import AuditLog
from eacon.models.payment import Payment, PaymentStatus
from eacon.models.token_transaction import TokenTransaction, TransactionStatus, TransactionType
from eacon.models.user import AccountType, User

__all__ = [
    "AccountType",
    "AuditLog",
    "Payment",
    "PaymentStatus",
    "TokenTransaction",
    "TransactionStatus",
    "TransactionType",
    "User",
]
