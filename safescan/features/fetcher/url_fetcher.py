"""
URL fetcher run inside the sandbox.

Fetches one URL with SSRF checks on every redirect hop, hashes the body while
streaming it and keeps only metadata. The body itself never leaves this module.
"""
import enum
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import httpx

from safescan.features.fetcher.metadata import extract_html_metadata
from safescan.features.scan.utils.headers import sanitize_headers
from safescan.platform.result import Err, Ok, Result
from safescan.platform.utils.url_validator import validate_url

# Enough HTML for title, meta tags and a link count
METADATA_SCAN_BYTES = 2 * 1024 * 1024
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
USER_AGENT = "SafeScan-Fetcher/0.1"


class FetchErrorType(str, enum.Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    HTTP = "http"
    TIMEOUT = "timeout"
    PARSE = "parse"


@dataclass(frozen=True)
class FetchError:
    type: FetchErrorType
    message: str

    def to_wire(self) -> Dict[str, str]:
        return {"type": self.type.value, "message": self.message}


@dataclass(frozen=True)
class FetchResult:
    content_hash: str
    http_status: Optional[int]
    http_headers: Dict[str, str]
    content_type: Optional[str]
    metadata: Dict[str, Any]
    final_url: str

    def to_wire(self) -> Dict[str, Any]:
        return {
            "contentHash": self.content_hash,
            "httpStatus": self.http_status,
            "httpHeaders": self.http_headers,
            "contentType": self.content_type,
            "metadata": self.metadata,
        }


def _read_body(response: httpx.Response):
    digest = hashlib.sha256()
    head = bytearray()
    for chunk in response.iter_bytes():
        digest.update(chunk)
        if len(head) < METADATA_SCAN_BYTES:
            head.extend(chunk[: METADATA_SCAN_BYTES - len(head)])
    return digest.hexdigest(), bytes(head)


def fetch_url(
    url: str,
    timeout_ms: int = 20000,
    max_redirect_depth: int = 5,
    transport: Optional[httpx.BaseTransport] = None,
) -> Result[FetchResult, FetchError]:
    is_valid, current_url, error_message = validate_url(url)
    if not is_valid:
        return Err(FetchError(FetchErrorType.VALIDATION, f"Invalid URL: {error_message}"))

    timeout = httpx.Timeout(timeout_ms / 1000.0)
    try:
        with httpx.Client(
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            for _ in range(max_redirect_depth + 1):
                with client.stream("GET", current_url) as response:
                    location = response.headers.get("location")
                    if response.status_code in REDIRECT_STATUSES and location:
                        next_url = urljoin(current_url, location)
                        is_valid, next_url, error_message = validate_url(next_url)
                        if not is_valid:
                            return Err(FetchError(
                                FetchErrorType.VALIDATION,
                                f"Redirect to disallowed URL: {error_message}",
                            ))
                        current_url = next_url
                        continue

                    content_hash, head = _read_body(response)
                    content_type = response.headers.get("content-type")
                    text = head.decode(response.encoding or "utf-8", errors="replace")
                    return Ok(FetchResult(
                        content_hash=content_hash,
                        http_status=response.status_code,
                        http_headers=sanitize_headers(response.headers),
                        content_type=content_type,
                        metadata=extract_html_metadata(text, content_type),
                        final_url=current_url,
                    ))
    except httpx.TimeoutException:
        return Err(FetchError(FetchErrorType.TIMEOUT, f"Fetch timeout after {timeout_ms}ms"))
    except httpx.HTTPError as e:
        return Err(FetchError(FetchErrorType.NETWORK, f"Network error: {e}"))

    return Err(FetchError(FetchErrorType.HTTP, f"Too many redirects (more than {max_redirect_depth})"))
