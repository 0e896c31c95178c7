import ipaddress
from typing import Tuple
from urllib.parse import urlparse, urlunparse

BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"})


def normalize_url(url: str) -> Tuple[str, bool]:

    url = url.strip()

    parsed = urlparse(url)

    if not parsed.scheme:
        normalized = f"https://{url}"
        return normalized, True

    # Fragments never reach the server
    if parsed.fragment:
        return urlunparse(parsed._replace(fragment="")), True

    return url, False


def is_public_host(hostname: str) -> bool:
    """False for localhost names and loopback, private, link-local or otherwise non-public IP literals."""
    host = hostname.strip("[]").lower().rstrip(".")
    if not host or host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return False

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        # A DNS name; resolution is left to the fetcher
        return True

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def validate_url(url: str) -> Tuple[bool, str, str]:
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url, was_modified = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)

        if parsed.scheme not in ['http', 'https']:
            return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

        if not parsed.netloc or not parsed.hostname:
            return False, normalized_url, "Invalid URL format: missing domain"

        # Raises ValueError on a malformed port
        parsed.port

        if not is_public_host(parsed.hostname):
            return False, normalized_url, "URL must be a public URL (no private/internal IPs)"

        return True, normalized_url, ""

    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {str(e)}"
