"""Domain exceptions raised by the order/payment services.

Routes let these propagate; ``main.py`` maps each class to an HTTP status.
"""
from typing import Optional


class BakeryError(Exception):
    """Base exception for all domain errors."""

    def to_detail(self) -> dict:
        return {"message": str(self)}


class NotFound(BakeryError):
    def __init__(self, resource: str, ref):
        self.resource = resource
        self.ref = ref
        super().__init__(f"{resource} {ref} not found")


class InsufficientStock(BakeryError):
    """Raised when a debit or cart mutation asks for more units than are available."""

    def __init__(self, unit, requested: int, available: int, *, name: Optional[str] = None,
                 size: Optional[str] = None, line_id: Optional[int] = None):
        self.unit = unit
        self.requested = requested
        self.available = available
        self.name = name
        self.size = size
        self.line_id = line_id
        label = name or str(unit)
        if size:
            label = f"{label} ({size})"
        super().__init__(f"Insufficient stock for {label}: requested {requested}, available {available}")

    def for_line(self, *, name=None, size=None, line_id=None) -> "InsufficientStock":
        """Return a copy that names the cart/order line at fault."""
        return InsufficientStock(self.unit, self.requested, self.available,
                                 name=name or self.name, size=size or self.size,
                                 line_id=line_id if line_id is not None else self.line_id)

    def to_detail(self) -> dict:
        return {
            "message": str(self),
            "line": {
                "line_id": self.line_id,
                "name": self.name,
                "size": self.size,
                "requested": self.requested,
                "available": self.available,
            },
        }


class AmountBelowMinimum(BakeryError):
    def __init__(self, amount: int, minimum: int):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Amount {amount} is below the processor minimum of {minimum} (minor units)")


class PaymentAmountMismatch(BakeryError):
    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Payment amount mismatch: expected {expected}, received {received} (minor units)")


class InvalidStatusTransition(BakeryError):
    def __init__(self, current, attempted, allowed):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        self.allowed = sorted(getattr(a, "value", a) for a in allowed)
        super().__init__(
            f"Cannot change status from '{self.current}' to '{self.attempted}'"
            f" (allowed: {', '.join(self.allowed) or 'none'})"
        )

    def to_detail(self) -> dict:
        return {
            "message": str(self),
            "current": self.current,
            "attempted": self.attempted,
            "allowed": self.allowed,
        }


class OrderTotalMismatch(BakeryError):
    def __init__(self, header_total, line_total):
        self.header_total = header_total
        self.line_total = line_total
        super().__init__(f"Order total {header_total} does not match the sum of its lines {line_total}")


class CheckoutValidationError(BakeryError):
    pass


class PaymentNotAllowed(BakeryError):
    """The target aggregate is not in a state that accepts this payment."""


class PaymentProcessorError(BakeryError):
    """The processor rejected or failed to create a payment."""


class PaymentVerificationFailed(BakeryError):
    """Verification could not complete within the retry budget."""

    def __init__(self, external_id: str, reason: str):
        self.external_id = external_id
        self.reason = reason
        super().__init__(f"Could not verify payment {external_id}: {reason}")

    def to_detail(self) -> dict:
        return {
            "message": "We could not confirm your payment yet. Please check your orders page.",
            "status": "unverified",
            "payment_id": self.external_id,
        }


class InvalidWebhookSignature(BakeryError):
    pass


class InvalidWebhookPayload(BakeryError):
    """A signed webhook body that is not a JSON event."""
