"""
Idempotency key generation utilities.

Every movement carries a key naming the business line that produced it.
Retrying the same line always yields the same key, so the ledger can turn
duplicates into no-ops.
"""


def line_idempotency_key(reference_type: str, reference_id: str, line_index: int | str) -> str:
    """
    Build the idempotency key for one line of a business operation.

    Format: reference_type:reference_id:line_index

    Example:
        >>> line_idempotency_key("sale", "S-100", 0)
        'sale:S-100:0'
    """
    if ":" in reference_type:
        raise ValueError(f"reference_type may not contain ':': {reference_type}")
    return f"{reference_type}:{reference_id}:{line_index}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Split a key into (reference_type, reference_id, line_index).

    The reference id may itself contain ':', so the line index is taken
    from the right.

    Raises:
        ValueError: If the key format is invalid.
    """
    head, sep, line_index = key.rpartition(":")
    reference_type, sep2, reference_id = head.partition(":")
    if not sep or not sep2 or not reference_type or not reference_id:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return reference_type, reference_id, line_index
