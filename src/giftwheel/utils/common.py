"""Common utility functions for the gift wheel backend."""

def shorten_username(username: str, max_length: int = 12) -> str:
    """Shorten a username for display: 'averyverylongname' -> 'averyverylon...'.
    Names up to max_length characters are returned unchanged.
    """
    if not username:
        return ""
    if len(username) <= max_length:
        return username
    return f"{username[:max_length]}..."
