"""URL validation for release downloads -- SSRF prevention.

Release source URLs come from package records and upstream listings, so they
are checked before the archiver fetches them.
"""

import ipaddress
import socket
from urllib.parse import urlparse


def validate_download_url(url: str, allow_private: bool = False) -> None:
    """Validate URL before download -- SSRF prevention.

    Ensures the URL uses HTTP(S) and, unless ``allow_private`` is set, does not
    resolve to a private, reserved, or loopback IP address.

    Args:
        url: The URL to validate.
        allow_private: Permit private/loopback hosts (local and development
            environments only).

    Raises:
        ValueError: If the URL scheme is not HTTP(S), has no hostname,
                    or resolves to a private/reserved/loopback IP.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("https", "http"):
        raise ValueError(f"Only HTTP(S) URLs allowed for downloads, got: {parsed.scheme!r}")
    if not parsed.hostname:
        raise ValueError("URL must have a hostname")
    if allow_private:
        return

    # Block private/reserved IPs
    try:
        resolved_ip = ipaddress.ip_address(socket.gethostbyname(parsed.hostname))
        if resolved_ip.is_private or resolved_ip.is_reserved or resolved_ip.is_loopback:
            raise ValueError(f"Downloads from private/reserved IPs not allowed: {resolved_ip}")
    except socket.gaierror:
        pass  # DNS resolution failure -- will fail at download time
