"""
ACME challenge solvers for HTTP-01 and DNS-01 validation.

HTTP-01 tokens live in a per-manager store and are served by an ASGI
wrapper around the application; DNS-01 records are published through a
DNS provider and checked over DNS-over-HTTPS before the ACME server is
asked to validate.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .acme_client import ChallengeInfo
from .dns_providers import DNSProvider


logger = logging.getLogger(__name__)

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"


class HTTPChallengeStore:
    """Pending HTTP-01 challenges: token -> key authorization."""

    def __init__(self):
        self._pending: dict[str, str] = {}

    def register(self, token: str, key_authorization: str) -> None:
        self._pending[token] = key_authorization
        logger.info("[TLS-CHALLENGE] Registered HTTP-01 challenge: %s", token)

    def get(self, token: str) -> Optional[str]:
        return self._pending.get(token)

    def clear(self, token: str) -> None:
        if self._pending.pop(token, None) is not None:
            logger.info("[TLS-CHALLENGE] Cleared HTTP-01 challenge: %s", token)

    def clear_all(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


class ACMEChallengeMiddleware:
    """
    ASGI app serving ``/.well-known/acme-challenge/<token>`` from a store.

    Every other request goes to the wrapped application unchanged.
    """

    def __init__(self, app: ASGIApp, store: HTTPChallengeStore):
        self.app = app
        self.store = store

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "") if scope["type"] == "http" else ""
        if not path.startswith(CHALLENGE_PATH_PREFIX):
            await self.app(scope, receive, send)
            return

        token = path[len(CHALLENGE_PATH_PREFIX):]
        key_authorization = self.store.get(token)
        if key_authorization is None:
            logger.warning("[TLS-CHALLENGE] Challenge not found for token: %s", token)
            response = PlainTextResponse("Challenge not found", status_code=404)
        else:
            logger.info("[TLS-CHALLENGE] Serving challenge response for token: %s", token)
            response = PlainTextResponse(key_authorization)
        await response(scope, receive, send)


class ChallengeSolver(ABC):
    """Publishes and withdraws the proof for one ACME challenge type."""

    challenge_type: str = ""

    @abstractmethod
    async def present(self, challenge: ChallengeInfo) -> None:
        """Make the challenge response visible to the ACME server."""

    @abstractmethod
    async def cleanup(self, challenge: ChallengeInfo) -> None:
        """Remove the challenge response."""


class HTTP01Solver(ChallengeSolver):
    """Serves key authorizations through an HTTPChallengeStore."""

    challenge_type = "http-01"

    def __init__(self, store: HTTPChallengeStore):
        self.store = store

    async def present(self, challenge: ChallengeInfo) -> None:
        self.store.register(challenge.token, challenge.key_authorization)

    async def cleanup(self, challenge: ChallengeInfo) -> None:
        self.store.clear(challenge.token)


async def verify_dns_challenge(
    record_name: str,
    expected_value: str,
    timeout: float = 10.0,
) -> tuple[bool, Optional[str]]:
    """
    Verify that a DNS-01 challenge TXT record is publicly visible.

    Args:
        record_name: The TXT record name (_acme-challenge.<domain>)
        expected_value: The expected TXT record value
        timeout: Timeout for the lookup

    Returns:
        Tuple of (success, error_message)
    """
    try:
        # Use DNS-over-HTTPS for reliable external lookup
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(
                "https://dns.google/resolve",
                params={"name": record_name, "type": "TXT"},
            )
            data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        return False, f"DNS lookup error: {e}"

    if data.get("Status") != 0:
        return False, f"DNS lookup failed: status {data.get('Status')}"

    # TXT records come quoted
    found_values = [
        a.get("data", "").strip('"')
        for a in data.get("Answer", [])
        if a.get("type") == 16
    ]
    if expected_value in found_values:
        return True, None
    if found_values:
        return False, f"TXT record found but value doesn't match. Found: {found_values}"
    return False, f"No TXT record found for {record_name}"


class DNS01Solver(ChallengeSolver):
    """Publishes TXT records through a DNS provider."""

    challenge_type = "dns-01"

    def __init__(self, provider: DNSProvider, ttl: int = 60, check_propagation: bool = True):
        self.provider = provider
        self.ttl = ttl
        self.check_propagation = check_propagation
        # (record name, value) -> provider record id
        self._records: dict[tuple[str, str], str] = {}

    async def present(self, challenge: ChallengeInfo) -> None:
        name = challenge.txt_record_name
        value = challenge.txt_record_value
        record_id = await self.provider.create_txt_record(name, value, ttl=self.ttl)
        self._records[(name, value)] = record_id
        logger.info("[TLS-DNS01] Published TXT record %s via %s", name, self.provider.provider_id)

        if self.check_propagation:
            await self._wait_for_propagation(name, value)

    async def cleanup(self, challenge: ChallengeInfo) -> None:
        key = (challenge.txt_record_name, challenge.txt_record_value)
        record_id = self._records.pop(key, None)
        if record_id is not None:
            await self.provider.delete_txt_record(record_id)

    async def _wait_for_propagation(self, name: str, value: str) -> None:
        """Poll until the record is visible or the provider's timeout passes."""
        deadline = time.monotonic() + self.provider.propagation_timeout
        while True:
            ok, error = await verify_dns_challenge(name, value)
            if ok:
                logger.info("[TLS-DNS01] TXT record %s is visible", name)
                return
            if time.monotonic() >= deadline:
                # Let the ACME server decide; some resolvers lag behind
                logger.warning("[TLS-DNS01] TXT record %s not visible yet: %s", name, error)
                return
            logger.debug("[TLS-DNS01] Waiting for %s: %s", name, error)
            await asyncio.sleep(self.provider.polling_interval)
