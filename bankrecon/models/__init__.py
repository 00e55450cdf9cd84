"""SQLAlchemy models package."""

from bankrecon.models.account import BankAccount, SyncFrequency
from bankrecon.models.bank_transaction import BankTransaction
from bankrecon.models.movement import Movement, MovementType, VerificationStatus

__all__ = [
    "BankAccount",
    "BankTransaction",
    "Movement",
    "MovementType",
    "SyncFrequency",
    "VerificationStatus",
]
