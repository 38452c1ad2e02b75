"""Recognize media segment responses and rewrite them into download URLs.

Segment requests carry their byte range in the path (``/range/0-1023``).
Dropping the path yields the URL of the whole resource.

PUBLIC API:
  - SEGMENT_MARKER: Path substring identifying first-range segment requests
  - is_segment_url: Check whether a URL is a segment request
  - to_downloadable: Strip the path from a segment URL
"""

from urllib.parse import urlsplit, urlunsplit

from streamtap.errors import MalformedURLError

SEGMENT_MARKER = "/range/0-"


def is_segment_url(url: str) -> bool:
    """Check whether url requests a byte range starting at offset zero.

    Args:
        url: Response URL.

    Returns:
        True if the path component contains SEGMENT_MARKER. Unparsable
        input is never a segment.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return SEGMENT_MARKER in path


def to_downloadable(url: str) -> str:
    """Remove the path from url, keeping scheme, host, port and query.

    Args:
        url: Segment URL.

    Returns:
        URL of the underlying resource.

    Raises:
        MalformedURLError: If url cannot be parsed or is not absolute.
    """
    try:
        parts = urlsplit(url)
        parts.port  # raises on a non-numeric or out of range port
    except ValueError as e:
        raise MalformedURLError(url, str(e)) from e

    if not parts.scheme or not parts.netloc:
        raise MalformedURLError(url, "missing scheme or host")

    return urlunsplit((parts.scheme, parts.netloc, "", parts.query, parts.fragment))


__all__ = ["SEGMENT_MARKER", "is_segment_url", "to_downloadable"]
