"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "", instance_id: str | None = None) -> str:
    """Generate a memorable worker ID for log correlation.

    Args:
        prefix: Optional prefix, usually the queue or consumer name
        instance_id: Ordinal of the worker within its pool, if pooled

    Returns:
        ID in the form "prefix-instance-word1-word2" (empty parts omitted)

    Examples:
        >>> generate_worker_id("uploads", "0")
        'uploads-0-brave-tiger'
    """
    parts = [p for p in (prefix, instance_id) if p]
    parts.append(generate_slug(2))
    return "-".join(parts)
