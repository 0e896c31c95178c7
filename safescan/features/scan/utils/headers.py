from typing import Dict, Mapping, Optional

# Response headers worth keeping for assessment and audit. Anything else
# (cookies, auth challenges, tracking ids) is dropped.
ALLOWED_RESPONSE_HEADERS = frozenset({
    "cache-control",
    "content-encoding",
    "content-language",
    "content-length",
    "content-security-policy",
    "content-type",
    "date",
    "etag",
    "expires",
    "last-modified",
    "location",
    "permissions-policy",
    "referrer-policy",
    "server",
    "strict-transport-security",
    "x-content-type-options",
    "x-frame-options",
    "x-powered-by",
    "x-xss-protection",
})


def sanitize_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Keep allow-listed headers only, with lower-cased names."""
    if not headers:
        return {}
    return {
        str(name).lower(): str(value)
        for name, value in headers.items()
        if str(name).lower() in ALLOWED_RESPONSE_HEADERS
    }
