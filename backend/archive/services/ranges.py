"""HTTP Range header parsing (single byte ranges only)."""
import re
from typing import Optional

from archive.services.errors import RangeNotSatisfiableError
from archive.services.storage.base import ByteRange

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


def parse_range_header(header: Optional[str], total_length: int) -> Optional[ByteRange]:
    """Resolve a Range header against a blob of ``total_length`` bytes.

    Returns None when the whole body should be sent: no header, a malformed
    header or a multi-range request. ``bytes=a-`` and ``bytes=-n`` are
    supported and an end past the last byte is clamped. Raises
    RangeNotSatisfiableError when start > end or start lies past the end.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        suffix = int(last)
        if suffix == 0 or total_length == 0:
            raise RangeNotSatisfiableError(total_length)
        return ByteRange(max(total_length - suffix, 0), total_length - 1)

    start = int(first)
    end = int(last) if last else total_length - 1
    if start > end or start >= total_length:
        raise RangeNotSatisfiableError(total_length)
    return ByteRange(start, min(end, total_length - 1))
