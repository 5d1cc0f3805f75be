"""
Atomic transaction handlers.

Handlers run multi-step operations under SERIALIZABLE isolation with
SELECT FOR UPDATE row locks and publish notification events only after the
commit succeeds.

Transaction handlers:
- BookingTransaction: Create an appointment (grid, conflict and quota checks)
- StatusTransaction: Status transitions and administrative delete
"""

from scheduling.transactions.booking_transaction import BookingTransaction, check_availability
from scheduling.transactions.status_transaction import StatusTransaction

__all__ = ["BookingTransaction", "StatusTransaction", "check_availability"]
