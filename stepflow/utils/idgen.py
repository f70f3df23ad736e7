"""ID Generation Utilities"""
import uuid

INSTANCE_PREFIX = "WFI"


def generate_id(prefix: str, length: int = 12) -> str:
    """
    Generate a prefixed random ID

    Args:
        prefix: Type prefix, e.g. 'WFI'
        length: Number of hex characters taken from a UUID4 (8-32)

    Examples:
        >>> generate_id('WFI')
        'WFI-3f9c0a7be21d'
    """
    if not 8 <= length <= 32:
        raise ValueError(f"length must be between 8 and 32, got {length}")
    return f"{prefix}-{uuid.uuid4().hex[:length]}"


def generate_instance_id() -> str:
    """Workflow instance ID; a collision surfaces as AlreadyExistsError on create"""
    return generate_id(INSTANCE_PREFIX)
