"""
Typed Exception Hierarchy for the Inventory Kernel.

Every error carries a machine-readable ``code`` class attribute and its
context as structured attributes, so callers catch by type and read
fields instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError                 never retried
    |   +-- InvalidMovementError
    |   +-- InvalidEventError
    |   +-- ProductNotFoundError
    |   +-- InvestorNotFoundError
    |   +-- InstrumentNotFoundError
    |   +-- PartyNotFoundError
    |   +-- DebtNotFoundError
    |
    +-- DomainRefusalError              never retried blindly
    |   +-- InsufficientStockError
    |   +-- InsufficientCapitalError
    |
    +-- TransientInfraError             retry-eligible
    |   +-- AttemptTimeoutError
    |   +-- LockContentionError
    |   +-- SequenceConflictError
    |
    +-- ConflictError
    |   +-- IdempotencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- OperationCancelledError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|---------------------------------------
Validation   | INVALID_MOVEMENT         | Zero quantity, wrong direction/owner
             | INVALID_EVENT            | Malformed sale/purchase/investor event
             | PRODUCT_NOT_FOUND        | Unknown or inactive product
             | INVESTOR_NOT_FOUND       | Unknown investor id
             | INSTRUMENT_NOT_FOUND     | Unknown check / installment
             | PARTY_NOT_FOUND          | Unknown customer/supplier/employee
             | DEBT_NOT_FOUND           | Unknown outstanding debt id
-------------|--------------------------|---------------------------------------
Domain       | INSUFFICIENT_STOCK       | Protected stock would go negative
             | INSUFFICIENT_CAPITAL     | Investor purchase exceeds capital
-------------|--------------------------|---------------------------------------
Transient    | ATTEMPT_TIMEOUT          | One attempt exceeded its time budget
             | LOCK_CONTENTION          | Pair lock not acquired in time
             | SEQUENCE_CONFLICT        | Another writer took the same seq
-------------|--------------------------|---------------------------------------
Conflict     | IDEMPOTENCY_CONFLICT     | Same key, different payload
-------------|--------------------------|---------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | UPDATE/DELETE of a movement
-------------|--------------------------|---------------------------------------
Control      | OPERATION_CANCELLED      | Caller cancelled a retrying operation
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Validation exceptions


class ValidationError(InventoryKernelError):
    """Base exception for rejected input. Never retried."""

    code: str = "VALIDATION_ERROR"


class InvalidMovementError(ValidationError):
    """A movement draft violates the rules of its kind."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str, kind: str | None = None, product_id: str | None = None):
        self.reason = reason
        self.kind = kind
        self.product_id = product_id
        super().__init__(f"Invalid movement ({kind or 'unknown'}): {reason}")


class InvalidEventError(ValidationError):
    """A business event is malformed."""

    code: str = "INVALID_EVENT"

    def __init__(self, event_type: str, reference_id: str | None, reason: str):
        self.event_type = event_type
        self.reference_id = reference_id
        self.reason = reason
        super().__init__(f"Invalid {event_type} {reference_id}: {reason}")


class ProductNotFoundError(ValidationError):
    """Product does not exist or is inactive."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found or inactive: {product_id}")


class InvestorNotFoundError(ValidationError):
    """Investor does not exist."""

    code: str = "INVESTOR_NOT_FOUND"

    def __init__(self, investor_id: str):
        self.investor_id = investor_id
        super().__init__(f"Investor not found: {investor_id}")


class InstrumentNotFoundError(ValidationError):
    """Check or installment does not exist."""

    code: str = "INSTRUMENT_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class PartyNotFoundError(ValidationError):
    """Directory entry does not exist."""

    code: str = "PARTY_NOT_FOUND"

    def __init__(self, party_type: str, party_code: str):
        self.party_type = party_type
        self.party_code = party_code
        super().__init__(f"Party not found: {party_type}:{party_code}")


class DebtNotFoundError(ValidationError):
    """Outstanding debt does not exist."""

    code: str = "DEBT_NOT_FOUND"

    def __init__(self, debt_id: str):
        self.debt_id = debt_id
        super().__init__(f"Debt not found: {debt_id}")


# Domain refusals


class DomainRefusalError(InventoryKernelError):
    """Base exception for business-rule refusals."""

    code: str = "DOMAIN_REFUSAL"


class InsufficientStockError(DomainRefusalError):
    """Outbound quantity exceeds available protected stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        owner_type: str,
        owner_id: str | None,
        available: int,
        requested: int,
    ):
        self.product_id = product_id
        self.owner_type = owner_type
        self.owner_id = owner_id
        self.available = available
        self.requested = requested
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient stock for {product_id} ({owner_type}"
            f"{':' + owner_id if owner_id else ''}): "
            f"available {available}, requested {requested}"
        )


class InsufficientCapitalError(DomainRefusalError):
    """Investor purchase exceeds the investor's remaining capital."""

    code: str = "INSUFFICIENT_CAPITAL"

    def __init__(self, investor_id: str, remaining: Decimal, requested: Decimal):
        self.investor_id = investor_id
        self.remaining = remaining
        self.requested = requested
        super().__init__(
            f"Insufficient capital for investor {investor_id}: "
            f"remaining {remaining}, requested {requested}"
        )


# Transient infrastructure failures


class TransientInfraError(InventoryKernelError):
    """Base exception for failures that may succeed on a later attempt."""

    code: str = "TRANSIENT_INFRA_ERROR"
    transient: bool = True


class AttemptTimeoutError(TransientInfraError):
    """A single attempt exceeded its time budget."""

    code: str = "ATTEMPT_TIMEOUT"

    def __init__(self, timeout: float, attempt: int):
        self.timeout = timeout
        self.attempt = attempt
        super().__init__(f"Attempt {attempt} exceeded timeout of {timeout}s")


class LockContentionError(TransientInfraError):
    """A (product, owner) lock could not be acquired in time."""

    code: str = "LOCK_CONTENTION"

    def __init__(self, lock_key: str, timeout: float):
        self.lock_key = lock_key
        self.timeout = timeout
        super().__init__(f"Could not acquire lock {lock_key} within {timeout}s")


class SequenceConflictError(TransientInfraError):
    """Another writer claimed the same ledger sequence number."""

    code: str = "SEQUENCE_CONFLICT"

    def __init__(self, seq: int):
        self.seq = seq
        super().__init__(f"Ledger sequence {seq} was taken by another writer")


# Conflicts


class ConflictError(InventoryKernelError):
    """Base exception for write conflicts that retrying cannot fix."""

    code: str = "CONFLICT_ERROR"


class IdempotencyConflictError(ConflictError):
    """
    Idempotency key exists but with a different payload hash.

    The same business reference was submitted twice with different
    content. This is a caller bug, not a race.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Payload mismatch for idempotency key {idempotency_key}: "
            f"expected {expected_hash}, received {received_hash}"
        )


# Immutability


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Control flow


class OperationCancelledError(InventoryKernelError):
    """The caller cancelled an operation while it was waiting or retrying."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Operation cancelled after {attempts} attempt(s)")
