"""
Atomic transaction handlers.

Transaction handlers encapsulate multi-step operations that must execute
atomically (all succeed or nothing changes). They coordinate between:
- the BookingStore (SERIALIZABLE transactions, row locks on slot reads)
- the provider's external calendar (busy re-check and event creation)

Key design principles:
1. Validation, rate limiting and verification before any state change
2. Complete rollback on any step failure, including the external event
3. Logging with trace_id ({requester}_{slot}) for debugging
4. Typed BookingError subclasses for every failure

Transaction handlers:
- BookingTransaction: held slot -> confirmed appointment
"""

from booking.transactions.booking_transaction import BookingResult, BookingTransaction

__all__ = ["BookingResult", "BookingTransaction"]
