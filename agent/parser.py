"""
Submission parser — turns the raw `url` field into a normalized target.

Examples:
    "https://example.com"        → "https://example.com"
    "  example.com/pricing "     → "https://example.com/pricing"
    ""  / None                   → ValidationError("URL is required")
    "ftp://example.com"          → ValidationError (scheme)
    "https://"                   → ValidationError (no host)
"""

import re
from urllib.parse import urlparse

from models.errors import ValidationError

_ALLOWED_SCHEMES = {"http", "https"}

# "scheme://" prefix; bare "host:port" is not a scheme
_SCHEME_PAT = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")

_WHITESPACE = re.compile(r"\s")


def parse_url(raw: str | None) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("URL is required")

    url = raw.strip()
    if _WHITESPACE.search(url):
        raise ValidationError("Invalid URL: contains whitespace")

    if not _SCHEME_PAT.match(url):
        url = f"https://{url}"

    parsed = urlparse(url)
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise ValidationError(
            f"Invalid URL scheme: {parsed.scheme} (must be http or https)"
        )
    if not parsed.hostname:
        raise ValidationError("Invalid URL: missing domain")

    return url
