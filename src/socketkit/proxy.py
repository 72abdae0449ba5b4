"""
=============================================================================
SYSTEM PROXY DISCOVERY
=============================================================================

Answers one question: would a request to the outside world go through a
proxy, and if so which one?

    get_system_proxy("https://google.com")
        │
        ├── scheme "https" → look up the "https" proxy
        │                    (HTTPS_PROXY / https_proxy, or the OS settings
        │                    on Windows and macOS)
        ├── host bypassed (NO_PROXY, OS exceptions)? → None
        └── otherwise → "http://proxy.corp:3128"

It is a pure query: nothing is cached and nothing is retried, so a changed
environment is picked up on the next call.
=============================================================================
"""

import logging
import urllib.request
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse


logger = logging.getLogger(__name__)

CHECK_URL = "https://google.com"
"""URL probed to decide whether external traffic needs a proxy."""


@dataclass(frozen=True)
class ProxyCredentials:
    username: str
    password: str = ""

    def __repr__(self) -> str:
        return f"ProxyCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class WebProxy:
    """A proxy URL plus the credentials to authenticate with it."""

    url: str
    credentials: Optional[ProxyCredentials] = None

    @property
    def authenticated_url(self) -> str:
        """The URL with credentials embedded, for urllib-style handlers."""
        if self.credentials is None:
            return self.url
        parsed = urlparse(self.url)
        netloc = f"{self.credentials.username}:{self.credentials.password}@{parsed.netloc}"
        return parsed._replace(netloc=netloc).geturl()

    def as_dict(self) -> Dict[str, str]:
        """Mapping for urllib.request.ProxyHandler."""
        url = self.authenticated_url
        return {"http": url, "https": url}


def get_system_proxy(
    check_url: str = CHECK_URL,
    proxies: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Proxy URL that would be used for check_url, or None.

    Args:
        check_url: URL to probe.
        proxies: Scheme → proxy mapping; defaults to the system settings
            from urllib.request.getproxies().
    """
    parsed = urlparse(check_url)
    scheme = parsed.scheme or "http"
    host = parsed.hostname or ""

    if proxies is None:
        proxies = urllib.request.getproxies()
        bypassed = bool(host) and urllib.request.proxy_bypass(host)
    else:
        bypassed = bool(host) and urllib.request.proxy_bypass_environment(host, proxies)

    proxy = proxies.get(scheme) or proxies.get("all")
    if not proxy or bypassed:
        logger.debug(f"No proxy for {check_url}")
        return None

    logger.debug(f"Proxy for {check_url}: {proxy}")
    return proxy


def is_proxy_required(check_url: str = CHECK_URL) -> bool:
    """True if external traffic goes through a proxy."""
    return get_system_proxy(check_url) is not None


def get_web_proxy(
    credentials: Optional[ProxyCredentials] = None,
    check_url: str = CHECK_URL,
) -> Optional[WebProxy]:
    """
    The system proxy for check_url with the given credentials attached.

    Returns:
        A WebProxy, or None when no proxy is configured.
    """
    url = get_system_proxy(check_url)
    if url is None:
        return None
    return WebProxy(url, credentials)
