"""
RFC 2136 dynamic update provider for ACME DNS-01 challenges.

Works with any authoritative server that accepts TSIG-signed updates
(BIND, Knot, PowerDNS, ...).
"""
import asyncio
import logging
import socket
import uuid
from typing import Optional

import dns.exception
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.tsigkeyring
import dns.update

from .base import DNSProvider, DNSProviderError, candidate_zones


logger = logging.getLogger(__name__)

DEFAULT_TSIG_ALGORITHM = "hmac-sha256."
DEFAULT_PORT = 53


def normalize_tsig_algorithm(algorithm: str) -> str:
    """Canonical TSIG algorithm name with trailing dot (default hmac-sha256.)."""
    algorithm = (algorithm or "").strip().lower()
    if not algorithm:
        return DEFAULT_TSIG_ALGORITHM
    if not algorithm.endswith("."):
        algorithm += "."
    return algorithm


def parse_nameserver(nameserver: str) -> tuple[str, int]:
    """Split "host:port" (or "[v6]:port"), defaulting the port to 53."""
    nameserver = nameserver.strip()
    if nameserver.startswith("["):
        host, _, rest = nameserver[1:].partition("]")
        port = rest.lstrip(":")
    elif nameserver.count(":") == 1:
        host, port = nameserver.split(":")
    else:
        host, port = nameserver, ""

    if not host:
        raise DNSProviderError("rfc2136: nameserver host is empty")
    if not port:
        return host, DEFAULT_PORT
    try:
        port_num = int(port)
    except ValueError:
        raise DNSProviderError(f"rfc2136: invalid nameserver port: {port}")
    if not 1 <= port_num <= 65535:
        raise DNSProviderError(f"rfc2136: invalid nameserver port: {port}")
    return host, port_num


class RFC2136DNS(DNSProvider):
    """TSIG-authenticated dynamic DNS updates."""

    provider_id = "rfc2136"

    def __init__(
        self,
        nameserver: str,
        tsig_key: str,
        tsig_secret: str,
        tsig_algorithm: str = "",
        timeout: float = 10.0,
    ):
        self.host, self.port = parse_nameserver(nameserver)
        self.tsig_algorithm = normalize_tsig_algorithm(tsig_algorithm)
        self.timeout = timeout
        try:
            self._keyring = dns.tsigkeyring.from_text({tsig_key: tsig_secret})
        except Exception as e:
            raise DNSProviderError(f"rfc2136: invalid TSIG key: {e}")
        self._key_name = dns.name.from_text(tsig_key)
        # record_id -> (zone, record name, value)
        self._records: dict[str, tuple[str, str, str]] = {}

    @property
    def propagation_timeout(self) -> int:
        return 60

    @property
    def polling_interval(self) -> int:
        return 2

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def _resolve_server(self) -> str:
        """dnspython needs an IP literal; resolve a hostname nameserver once."""
        infos = socket.getaddrinfo(self.host, self.port, proto=socket.IPPROTO_UDP)
        return infos[0][4][0]

    def _find_zone(self, domain: str) -> Optional[str]:
        where = self._resolve_server()
        for zone in candidate_zones(domain):
            query = dns.message.make_query(zone, dns.rdatatype.SOA)
            response = dns.query.udp(query, where, port=self.port, timeout=self.timeout)
            if response.rcode() == dns.rcode.NOERROR and any(
                rrset.rdtype == dns.rdatatype.SOA for rrset in response.answer
            ):
                return zone
        return None

    def _send_update(self, zone: str, name: str, value: str, ttl: int, delete: bool) -> None:
        update = dns.update.UpdateMessage(
            zone,
            keyring=self._keyring,
            keyname=self._key_name,
            keyalgorithm=self.tsig_algorithm,
        )
        if delete:
            update.delete(name + ".", "TXT", value)
        else:
            update.add(name + ".", ttl, "TXT", value)

        response = dns.query.tcp(update, self._resolve_server(), port=self.port, timeout=self.timeout)
        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            raise DNSProviderError(f"rfc2136: update rejected: {dns.rcode.to_text(rcode)}")

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        """Check the nameserver answers; TSIG is only proven by an update."""
        try:
            await self._run(self._resolve_server)
            return True, None
        except OSError as e:
            return False, f"Cannot resolve nameserver {self.host}: {e}"

    async def get_zone_id(self, domain: str) -> Optional[str]:
        try:
            return await self._run(self._find_zone, domain)
        except (dns.exception.DNSException, OSError) as e:
            raise DNSProviderError(f"rfc2136: zone lookup failed: {e}")

    async def create_txt_record(self, name: str, value: str, ttl: int = 60) -> str:
        name = name.rstrip(".")
        zone = await self.get_zone_id(name)
        if not zone:
            raise DNSProviderError(f"rfc2136: could not find zone for {name}")

        try:
            await self._run(self._send_update, zone, name, value, ttl, False)
        except (dns.exception.DNSException, OSError) as e:
            raise DNSProviderError(f"rfc2136: update failed: {e}")

        record_id = uuid.uuid4().hex
        self._records[record_id] = (zone, name, value)
        logger.info("[TLS-RFC2136] Added TXT record %s in zone %s", name, zone)
        return record_id

    async def delete_txt_record(self, record_id: str) -> bool:
        entry = self._records.pop(record_id, None)
        if entry is None:
            logger.warning("[TLS-RFC2136] Unknown TXT record id (already deleted?): %s", record_id)
            return True

        zone, name, value = entry
        try:
            await self._run(self._send_update, zone, name, value, 0, True)
        except (dns.exception.DNSException, OSError) as e:
            raise DNSProviderError(f"rfc2136: delete failed: {e}")

        logger.info("[TLS-RFC2136] Removed TXT record %s", name)
        return True
