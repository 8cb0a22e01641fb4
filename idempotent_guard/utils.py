def is_blank(value: object) -> bool:
    """True for None or a string with no visible characters."""
    return value is None or (isinstance(value, str) and not value.strip())
