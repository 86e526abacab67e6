"""
ACME client for Let's Encrypt certificate management.

Implements the ACME v2 protocol (RFC 8555) for automatic certificate
issuance with a pluggable challenge solver (HTTP-01 or DNS-01). The
account is identified by a long-lived EC P-256 key stored in
``<data_dir>/certs/account.key``.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import httpx
import josepy as jose
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from .errors import TLSError
from .storage import CertificateBundle, CertificateLoadError, write_private_file

if TYPE_CHECKING:
    from .challenges import ChallengeSolver


logger = logging.getLogger(__name__)


# ACME directory URLs
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"

BAD_NONCE = "urn:ietf:params:acme:error:badNonce"


class ACMEError(TLSError):
    """ACME protocol or transport failure."""

    def __init__(self, message: str, status: Optional[int] = None, problem: Optional[dict] = None):
        super().__init__(message)
        self.status = status
        self.problem = problem or {}


class ACMEChallengeError(ACMEError):
    """A domain authorization failed or timed out."""

    pass


class ACMEOrderError(ACMEError):
    """An order could not be created, finalized or downloaded."""

    pass


@dataclass
class ChallengeInfo:
    """Information about a pending ACME challenge."""

    type: str
    token: str
    key_authorization: str
    domain: str
    url: str = ""

    @property
    def url_path(self) -> str:
        """HTTP-01 request path."""
        return f"/.well-known/acme-challenge/{self.token}"

    @property
    def txt_record_name(self) -> str:
        """DNS-01 record name."""
        return f"_acme-challenge.{self.domain.removeprefix('*.')}"

    @property
    def txt_record_value(self) -> str:
        """DNS-01 TXT value: base64url(sha256(key_authorization))."""
        digest = hashes.Hash(hashes.SHA256())
        digest.update(self.key_authorization.encode("utf-8"))
        return jose.json_util.encode_b64jose(digest.finalize())


def load_or_create_account_key(path: Path) -> ec.EllipticCurvePrivateKey:
    """
    Load the ACME account key, or generate and persist a new one.

    An unreadable, unparsable or non-EC key file is replaced with a fresh
    P-256 key (owner-only permissions). Failing to save the new key is
    logged; the in-memory key is still returned.
    """
    if path.exists():
        try:
            key = serialization.load_pem_private_key(path.read_bytes(), password=None)
            if isinstance(key, ec.EllipticCurvePrivateKey):
                logger.info("[TLS-ACME] Loaded existing ACME account key")
                return key
            logger.warning("[TLS-ACME] Account key is not an EC key, creating new")
        except (OSError, ValueError, TypeError) as e:
            logger.warning("[TLS-ACME] Failed to load account key, creating new: %s", e)

    key = ec.generate_private_key(ec.SECP256R1())
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_private_file(path, key_pem, 0o600)
        logger.info("[TLS-ACME] Created and saved new ACME account key")
    except OSError as e:
        logger.warning("[TLS-ACME] Failed to save account key: %s", e)
    return key


class ACMEClient:
    """
    ACME client bound to one directory and one account key.

    Usage:
        client = ACMEClient(email, account_key, staging=True)
        await client.register()
        bundle = await client.obtain_certificate(["example.com"], solver)
    """

    # Authorization/order polling
    poll_interval: float = 2.0
    poll_attempts: int = 30

    def __init__(
        self,
        email: str,
        account_key: ec.EllipticCurvePrivateKey,
        staging: bool = False,
        directory_url: Optional[str] = None,
    ):
        self.email = email
        self.account_key = account_key
        self.staging = staging
        self.directory_url = directory_url or (
            LETSENCRYPT_STAGING if staging else LETSENCRYPT_PRODUCTION
        )

        self.directory: dict = {}
        self.account_url: Optional[str] = None
        self.nonce: Optional[str] = None
        self._jwk = jose.JWKEC(key=account_key.public_key())

    @property
    def is_registered(self) -> bool:
        return self.account_url is not None

    def thumbprint(self) -> str:
        """Account key thumbprint (RFC 7638) used in key authorizations."""
        return jose.json_util.encode_b64jose(self._jwk.thumbprint())

    def key_authorization(self, token: str) -> str:
        return f"{token}.{self.thumbprint()}"

    async def _fetch_directory(self) -> None:
        if self.directory:
            return
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.get(self.directory_url)
                resp.raise_for_status()
                self.directory = resp.json()
        except httpx.HTTPError as e:
            raise ACMEError(f"Failed to fetch ACME directory: {e}")
        logger.info("[TLS-ACME] Fetched ACME directory from %s", self.directory_url)

    async def _get_nonce(self) -> str:
        """Get a fresh nonce from the ACME server."""
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.head(self.directory["newNonce"])
        except httpx.HTTPError as e:
            raise ACMEError(f"Failed to get ACME nonce: {e}")
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise ACMEError("ACME server returned no Replay-Nonce")
        return nonce

    def _sign(self, data: bytes) -> bytes:
        """ES256 signature: r || s, each 32 bytes."""
        der = self.account_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return r.to_bytes(32, "big") + s.to_bytes(32, "big")

    def _sign_request(self, url: str, payload: Optional[dict], nonce: str) -> dict:
        """
        Build a flattened JWS body.

        Args:
            url: The URL being requested
            payload: The payload to sign (None for POST-as-GET)
            nonce: Replay nonce
        """
        if payload is None:
            payload_b64 = ""
        else:
            payload_b64 = jose.json_util.encode_b64jose(json.dumps(payload).encode("utf-8"))

        protected = {"alg": "ES256", "nonce": nonce, "url": url}
        if self.account_url:
            protected["kid"] = self.account_url
        else:
            # Registration carries the full public key
            protected["jwk"] = self._jwk.to_partial_json()

        protected_b64 = jose.json_util.encode_b64jose(json.dumps(protected).encode("utf-8"))
        signature = self._sign(f"{protected_b64}.{payload_b64}".encode("ascii"))

        return {
            "protected": protected_b64,
            "payload": payload_b64,
            "signature": jose.json_util.encode_b64jose(signature),
        }

    async def _post(self, url: str, payload: Optional[dict] = None) -> httpx.Response:
        """Signed POST, retrying once on a badNonce error."""
        for attempt in range(2):
            if self.nonce is None:
                self.nonce = await self._get_nonce()
            body = self._sign_request(url, payload, self.nonce)
            self.nonce = None

            try:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await client.post(
                        url,
                        json=body,
                        headers={"Content-Type": "application/jose+json"},
                    )
            except httpx.HTTPError as e:
                raise ACMEError(f"ACME request to {url} failed: {e}")

            self.nonce = resp.headers.get("Replay-Nonce")

            if resp.status_code < 400:
                return resp

            problem = _problem(resp)
            if problem.get("type") == BAD_NONCE and attempt == 0:
                logger.debug("[TLS-ACME] Bad nonce, retrying %s", url)
                continue
            raise ACMEError(
                f"ACME request failed: {resp.status_code} - {problem.get('detail', resp.text)}",
                status=resp.status_code,
                problem=problem,
            )
        raise ACMEError(f"ACME request to {url} failed: bad nonce")

    async def _acme_request(self, url: str, payload: Optional[dict] = None) -> tuple[dict, dict]:
        """
        Make a signed ACME request.

        Returns:
            Tuple of (response_body, response_headers)
        """
        resp = await self._post(url, payload)
        body = resp.json() if resp.content else {}
        return body, dict(resp.headers)

    async def register(self) -> str:
        """Register the account (or look up the existing one for this key)."""
        await self._fetch_directory()
        if self.account_url:
            return self.account_url

        payload: dict = {"termsOfServiceAgreed": True}
        if self.email:
            payload["contact"] = [f"mailto:{self.email}"]

        _, headers = await self._acme_request(self.directory["newAccount"], payload)
        account_url = headers.get("location") or headers.get("Location")
        if not account_url:
            raise ACMEError("No account URL in newAccount response")

        self.account_url = account_url
        logger.info("[TLS-ACME] ACME account registered/retrieved: %s", account_url)
        return account_url

    async def obtain_certificate(
        self,
        domains: list[str],
        solver: "ChallengeSolver",
    ) -> CertificateBundle:
        """
        Issue a certificate for ``domains`` using ``solver`` for every authorization.

        A fresh EC P-256 certificate key is generated for each order.

        Returns:
            Validated CertificateBundle (full chain PEM + key PEM)

        Raises:
            ACMEError: On any protocol failure
        """
        if not domains:
            raise ACMEOrderError("No domains to order a certificate for")
        await self.register()

        logger.info("[TLS-ACME] Creating certificate order for %s", ", ".join(domains))
        order, headers = await self._acme_request(
            self.directory["newOrder"],
            {"identifiers": [{"type": "dns", "value": d} for d in domains]},
        )
        order_url = headers.get("location") or headers.get("Location")
        if not order_url:
            raise ACMEOrderError("No order URL in newOrder response")

        for auth_url in order.get("authorizations", []):
            await self._authorize(auth_url, solver)

        cert_key = ec.generate_private_key(ec.SECP256R1())
        csr = _build_csr(domains, cert_key)

        logger.info("[TLS-ACME] Finalizing certificate order")
        order, _ = await self._acme_request(
            order["finalize"],
            {"csr": jose.json_util.encode_b64jose(csr.public_bytes(serialization.Encoding.DER))},
        )
        order = await self._poll(order_url, order, ("valid",), "Order finalization", ACMEOrderError)

        resp = await self._post(order["certificate"])
        fullchain_pem = resp.text

        key_pem = cert_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        try:
            bundle = CertificateBundle.from_pem(fullchain_pem, key_pem)
        except CertificateLoadError as e:
            raise ACMEOrderError(f"Downloaded certificate is invalid: {e}")

        logger.info(
            "[TLS-ACME] Certificate issued for %s, expires %s",
            ", ".join(domains), bundle.not_after.isoformat(),
        )
        return bundle

    async def _authorize(self, auth_url: str, solver: "ChallengeSolver") -> None:
        auth, _ = await self._acme_request(auth_url, None)
        domain = auth.get("identifier", {}).get("value", "")
        if auth.get("wildcard"):
            domain = f"*.{domain}"

        if auth["status"] == "valid":
            logger.debug("[TLS-ACME] Authorization already valid for %s", domain)
            return

        challenge = next(
            (ch for ch in auth.get("challenges", []) if ch["type"] == solver.challenge_type),
            None,
        )
        if challenge is None:
            raise ACMEChallengeError(f"Challenge type {solver.challenge_type} not available for {domain}")

        info = ChallengeInfo(
            type=solver.challenge_type,
            token=challenge["token"],
            key_authorization=self.key_authorization(challenge["token"]),
            domain=domain,
            url=challenge["url"],
        )

        try:
            await solver.present(info)
            logger.info("[TLS-ACME] Responding to %s challenge for %s", info.type, domain)
            await self._acme_request(challenge["url"], {})
            auth = await self._poll(auth_url, auth, ("valid",), f"Authorization for {domain}", ACMEChallengeError)
            logger.info("[TLS-ACME] Authorization valid for %s", domain)
        finally:
            try:
                await solver.cleanup(info)
            except Exception as e:
                logger.warning("[TLS-ACME] Challenge cleanup failed for %s: %s", domain, e)

    async def _poll(self, url: str, resource: dict, done: tuple, what: str, error_cls: type) -> dict:
        """Poll an authorization/order until it reaches a final status."""
        for _ in range(self.poll_attempts):
            status = resource.get("status")
            if status in done:
                return resource
            if status == "invalid":
                raise error_cls(f"{what} failed: {_first_error(resource)}")
            await asyncio.sleep(self.poll_interval)
            resource, _ = await self._acme_request(url, None)

        if resource.get("status") in done:
            return resource
        raise error_cls(f"{what} timed out")


def _problem(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _first_error(resource: dict) -> str:
    """Best error detail from an invalid authorization or order."""
    if "error" in resource:
        return resource["error"].get("detail", "unknown error")
    for ch in resource.get("challenges", []):
        if "error" in ch:
            return ch["error"].get("detail", "unknown error")
    return "status invalid"


def _build_csr(domains: list[str], key: ec.EllipticCurvePrivateKey) -> x509.CertificateSigningRequest:
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
