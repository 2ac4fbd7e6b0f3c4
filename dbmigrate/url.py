"""Scheme extraction from driver URLs."""


class URLError(ValueError):
    """Raised when a driver URL cannot be interpreted."""


def scheme_from_url(url: str) -> str:
    """Return the scheme part of a driver URL such as ``postgres://...``."""
    if not url:
        raise URLError("URL cannot be empty")
    index = url.find(":")
    # No ':' at all, or ':' is the first character.
    if index < 1:
        raise URLError("no scheme")
    return url[:index]