"""
Host and domain resolution helpers.

Resolves the server's public name for certificate domain lists and
display URLs, and recognizes development-only TLDs.
"""
import ipaddress
import os
import socket
from typing import Mapping, Optional


# TLDs that never get a publicly trusted certificate
DEV_ONLY_TLDS = frozenset({
    "localhost",
    "test",
    "example",
    "invalid",
    "local",
    "lan",
    "internal",
    "home",
    "localdomain",
    "home.arpa",
    "intranet",
    "corp",
    "private",
})

FORWARDED_HOST_HEADERS = ("x-forwarded-host", "x-real-host", "x-original-host")


def get_all_domains() -> list[str]:
    """Return all domains from the comma-separated DOMAIN env var."""
    raw = os.environ.get("DOMAIN", "")
    return [d.strip() for d in raw.split(",") if d.strip()]


def is_loopback(host: str) -> bool:
    """Check if a hostname or IP literal is loopback."""
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def get_fqdn(project_name: str = "") -> str:
    """
    Resolve the fully qualified domain name of this server.

    Order: first DOMAIN entry, the OS hostname, $HOSTNAME (loopback names
    are skipped at each step), then "localhost".
    """
    domains = get_all_domains()
    if domains:
        return domains[0]

    hostname = socket.gethostname()
    if hostname and not is_loopback(hostname):
        return hostname

    hostname = os.environ.get("HOSTNAME", "")
    if hostname and not is_loopback(hostname):
        return hostname

    return "localhost"


def is_dev_tld(host: str, project_name: str = "") -> bool:
    """Check if the host belongs to a development-only TLD."""
    lower = host.lower()

    # Project-specific TLD (e.g. app.search)
    if project_name and lower.endswith("." + project_name.lower()):
        return True

    return any(lower == tld or lower.endswith("." + tld) for tld in DEV_ONLY_TLDS)


def _strip_port(host: str) -> str:
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def get_host_from_request(headers: Mapping[str, str], project_name: str = "") -> str:
    """Resolve the public host of a request, honouring reverse-proxy headers."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for header in FORWARDED_HOST_HEADERS:
        host = lowered.get(header)
        if host:
            return _strip_port(host.strip())
    return get_fqdn(project_name)


def format_url(host: str, port: int, is_https: bool) -> str:
    """Format a URL, omitting the port when it is the scheme default."""
    proto = "https" if is_https else "http"
    if (is_https and port == 443) or (not is_https and port == 80):
        return f"{proto}://{host}"
    return f"{proto}://{host}:{port}"


def get_display_url(project_name: str, port: int, is_https: bool, fallback_ip: Optional[str] = None) -> str:
    """Best URL to show operators; dev TLDs fall back to an IP if one is known."""
    fqdn = get_fqdn(project_name)
    if not is_dev_tld(fqdn, project_name) and fqdn != "localhost":
        return format_url(fqdn, port, is_https)
    if fallback_ip:
        if ":" in fallback_ip:
            fallback_ip = f"[{fallback_ip}]"
        return format_url(fallback_ip, port, is_https)
    return format_url(fqdn, port, is_https)
