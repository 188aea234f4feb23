"""Display filename sanitizing and Content-Disposition headers.

The sanitized name is only ever shown to users and sent back in
Content-Disposition; it never becomes part of a storage path.
"""
import re
import unicodedata
from urllib.parse import quote

MAX_FILENAME_LENGTH = 200
DEFAULT_FILENAME = "document.pdf"
PDF_SUFFIX = ".pdf"

_UNSAFE_CHARS = re.compile(r'[\x00-\x1f\x7f<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(name: str | None) -> str:
    """Return a safe display name that always ends in ``.pdf``.

    >>> sanitize_filename("../../etc/passwd.pdf")
    'passwd.pdf'
    """
    if not name:
        return DEFAULT_FILENAME
    name = unicodedata.normalize("NFC", name)
    # Keep only the last path component, whichever separator was used
    name = re.split(r"[/\\]", name)[-1]
    name = _UNSAFE_CHARS.sub("", name)
    name = _WHITESPACE.sub(" ", name).strip().lstrip(".").strip()

    stem = name[:-len(PDF_SUFFIX)] if name.lower().endswith(PDF_SUFFIX) else name
    stem = stem.rstrip(" .")
    if not stem:
        return DEFAULT_FILENAME
    return stem[:MAX_FILENAME_LENGTH - len(PDF_SUFFIX)] + PDF_SUFFIX


def ascii_fallback(name: str) -> str:
    """Best-effort ASCII rendition for the plain ``filename=`` parameter."""
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_name = decomposed.encode("ascii", "ignore").decode("ascii")
    ascii_name = ascii_name.replace('"', "").replace("\\", "").strip()
    if not ascii_name or ascii_name == PDF_SUFFIX:
        return DEFAULT_FILENAME
    return ascii_name


def content_disposition(disposition: str, filename: str) -> str:
    """Build an RFC 6266 header value.

    Non-ASCII names get an RFC 5987 ``filename*=UTF-8''...`` parameter next
    to the ASCII fallback.
    """
    value = f'{disposition}; filename="{ascii_fallback(filename)}"'
    if not filename.isascii():
        value += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return value
