"""
DigitalOcean DNS provider for ACME DNS-01 challenges.
"""
import logging
from typing import Optional

import httpx

from .base import DNSProvider, DNSProviderError, candidate_zones, split_record_name


logger = logging.getLogger(__name__)

# DigitalOcean rejects TTLs below 30 seconds
MIN_TTL = 30


class DigitalOceanDNS(DNSProvider):
    """DigitalOcean Domains API implementation (API token with write scope)."""

    provider_id = "digitalocean"
    BASE_URL = "https://api.digitalocean.com/v2"

    def __init__(self, auth_token: str):
        self._headers = {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
        }
        # record_id -> zone name, for cleanup
        self._record_zones: dict[str, str] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.BASE_URL, headers=self._headers, timeout=30.0)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            return resp.json().get("message", resp.text)
        except ValueError:
            return resp.text

    async def verify_credentials(self) -> tuple[bool, Optional[str]]:
        try:
            async with self._client() as client:
                resp = await client.get("/account")
            if resp.status_code != 200:
                return False, f"DigitalOcean API error: {self._error_message(resp)}"
            return True, None
        except httpx.HTTPError as e:
            return False, f"Connection error: {e}"

    async def get_zone_id(self, domain: str) -> Optional[str]:
        """DigitalOcean identifies zones by name; return the managed parent domain."""
        try:
            async with self._client() as client:
                for zone_name in candidate_zones(domain):
                    resp = await client.get(f"/domains/{zone_name}")
                    if resp.status_code == 200:
                        logger.info("[TLS-DIGITALOCEAN] Found DigitalOcean domain: %s", zone_name)
                        return zone_name
                    if resp.status_code != 404:
                        raise DNSProviderError(
                            f"DigitalOcean API error: {self._error_message(resp)}"
                        )
            return None
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to get domain: {e}")

    async def create_txt_record(self, name: str, value: str, ttl: int = 60) -> str:
        zone = await self.get_zone_id(split_record_name(name))
        if not zone:
            raise DNSProviderError(f"Could not find domain for record: {name}")

        fqdn = name.rstrip(".")
        relative = fqdn[: -len(zone)].rstrip(".") or "@"

        try:
            async with self._client() as client:
                resp = await client.post(f"/domains/{zone}/records", json={
                    "type": "TXT",
                    "name": relative,
                    "data": value,
                    "ttl": max(MIN_TTL, ttl),
                })
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to create TXT record: {e}")

        if resp.status_code not in (200, 201):
            raise DNSProviderError(f"DigitalOcean API error: {self._error_message(resp)}")

        record_id = str(resp.json()["domain_record"]["id"])
        self._record_zones[record_id] = zone
        logger.info("[TLS-DIGITALOCEAN] Created TXT record: %s (%s)", fqdn, record_id)
        return record_id

    async def delete_txt_record(self, record_id: str) -> bool:
        zone = self._record_zones.pop(record_id, None)
        if zone is None:
            raise DNSProviderError(f"Domain unknown for record: {record_id}")

        try:
            async with self._client() as client:
                resp = await client.delete(f"/domains/{zone}/records/{int(record_id)}")
        except httpx.HTTPError as e:
            raise DNSProviderError(f"Failed to delete TXT record: {e}")

        if resp.status_code == 404:
            logger.warning("[TLS-DIGITALOCEAN] TXT record not found (already deleted?): %s", record_id)
            return True
        if resp.status_code not in (200, 204):
            raise DNSProviderError(f"DigitalOcean API error: {self._error_message(resp)}")

        logger.info("[TLS-DIGITALOCEAN] Deleted TXT record: %s", record_id)
        return True
