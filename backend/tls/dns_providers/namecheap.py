"""
Namecheap DNS provider for ACME DNS-01 challenges.

Namecheap's XML API has no per-record operations: ``setHosts`` replaces
the whole host list, so every change reads the current list first.
"""
import logging
import uuid
import xml.etree.ElementTree as ET
from typing import Optional

import httpx

from .base import DNSProvider, DNSProviderError, split_record_name


logger = logging.getLogger(__name__)

NS = {"nc": "http://api.namecheap.com/xml.response"}

# Second-level public suffixes commonly registered through Namecheap
MULTI_LABEL_TLDS = frozenset({
    "co.uk", "org.uk", "me.uk", "ltd.uk", "plc.uk",
    "com.au", "net.au", "org.au",
    "co.nz", "net.nz", "org.nz",
    "com.br", "com.mx", "co.in", "co.za",
})


def split_domain(domain: str) -> tuple[str, str, str]:
    """
    Split a name into (host, sld, tld).

    >>> split_domain("_acme-challenge.www.example.co.uk")
    ('_acme-challenge.www', 'example', 'co.uk')
    """
    labels = domain.rstrip(".").lower().split(".")
    if len(labels) < 2:
        raise DNSProviderError(f"namecheap: cannot determine zone for {domain}")

    tld_len = 2 if ".".join(labels[-2:]) in MULTI_LABEL_TLDS and len(labels) > 2 else 1
    tld = ".".join(labels[-tld_len:])
    sld = labels[-tld_len - 1]
    host = ".".join(labels[: -tld_len - 1])
    return host, sld, tld


class NamecheapDNS(DNSProvider):
    """Namecheap XML API implementation (API user, key and whitelisted client IP)."""

    provider_id = "namecheap"
    BASE_URL = "https://api.namecheap.com/xml.response"

    def __init__(self, api_user: str, api_key: str, client_ip: str):
        self._auth = {
            "ApiUser": api_user,
            "ApiKey": api_key,
            "UserName": api_user,
            "ClientIp": client_ip,
        }
        # record_id -> (sld, tld, host, value)
        self._records: dict[str, tuple[str, str, str, str]] = {}

    @property
    def propagation_timeout(self) -> int:
        return 3600

    @property
    def polling_interval(self) -> int:
        return 15

    async def _call(self, command: str, method: str = "GET", **params) -> ET.Element:
        """Execute an API command and return the CommandResponse element."""
        query = {**self._auth, "Command": command, **params}
        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                if method == "POST":
                    resp = await client.post(self.BASE_URL, data=query)
                else:
                    resp = await client.get(self.BASE_URL, params=query)
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Namecheap request failed: {e}")

        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as e:
            raise DNSProviderError(f"Namecheap returned invalid XML: {e}")

        if root.get("Status") != "OK":
            errors = [err.text or "" for err in root.findall("nc:Errors/nc:Error", NS)]
            raise DNSProviderError(f"Namecheap API error: {'; '.join(errors) or 'unknown'}")

        response = root.find("nc:CommandResponse", NS)
        if response is None:
            raise DNSProviderError("Namecheap API error: missing CommandResponse")
        return response

    async def _get_hosts(self, sld: str, tld: str) -> list[dict[str, str]]:
        response = await self._call("namecheap.domains.dns.getHosts", SLD=sld, TLD=tld)
        hosts = []
        for host in response.findall("nc:DomainDNSGetHostsResult/nc:host", NS):
            hosts.append({
                "name": host.get("Name", ""),
                "type": host.get("Type", ""),
                "address": host.get("Address", ""),
                "mx_pref": host.get("MXPref", "10"),
                "ttl": host.get("TTL", "1800"),
            })
        return hosts

    async def _set_hosts(self, sld: str, tld: str, hosts: list[dict[str, str]]) -> None:
        params = {"SLD": sld, "TLD": tld}
        for i, host in enumerate(hosts, start=1):
            params[f"HostName{i}"] = host["name"]
            params[f"RecordType{i}"] = host["type"]
            params[f"Address{i}"] = host["address"]
            params[f"MXPref{i}"] = host["mx_pref"]
            params[f"TTL{i}"] = host["ttl"]
        response = await self._call("namecheap.domains.dns.setHosts", method="POST", **params)
        result = response.find("nc:DomainDNSSetHostsResult", NS)
        if result is None or result.get("IsSuccess", "").lower() != "true":
            raise DNSProviderError("Namecheap API error: setHosts was not successful")

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        try:
            await self._call("namecheap.users.getBalances")
            return True, None
        except DNSProviderError as e:
            return False, str(e)

    async def get_zone_id(self, domain: str) -> Optional[str]:
        _, sld, tld = split_domain(domain)
        return f"{sld}.{tld}"

    async def create_txt_record(self, name: str, value: str, ttl: int = 60) -> str:
        host, sld, tld = split_domain(name)
        hosts = await self._get_hosts(sld, tld)
        hosts.append({
            "name": host or "@",
            "type": "TXT",
            "address": value,
            "mx_pref": "10",
            # Namecheap's minimum TTL
            "ttl": str(max(60, ttl)),
        })
        await self._set_hosts(sld, tld, hosts)

        record_id = uuid.uuid4().hex
        self._records[record_id] = (sld, tld, host or "@", value)
        logger.info("[TLS-NAMECHEAP] Created TXT record: %s", split_record_name(name))
        return record_id

    async def delete_txt_record(self, record_id: str) -> bool:
        entry = self._records.pop(record_id, None)
        if entry is None:
            logger.warning("[TLS-NAMECHEAP] Unknown TXT record id (already deleted?): %s", record_id)
            return True

        sld, tld, host, value = entry
        hosts = await self._get_hosts(sld, tld)
        remaining = [
            h for h in hosts
            if not (h["type"] == "TXT" and h["name"] == host and h["address"] == value)
        ]
        if len(remaining) != len(hosts):
            await self._set_hosts(sld, tld, remaining)
        logger.info("[TLS-NAMECHEAP] Deleted TXT record for %s.%s.%s", host, sld, tld)
        return True
