from app.models.user import User
from app.models.contact import Contact
from app.models.credit_balance import CreditBalance
from app.models.payment_record import PaymentRecord
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Contact",
    "CreditBalance",
    "PaymentRecord",
    "AuditLog",
]
