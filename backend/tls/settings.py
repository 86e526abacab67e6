"""
TLS/SSL certificate configuration settings.

Models the operator-facing ``ssl`` block: manual certificate paths,
Let's Encrypt ACME settings and DNS-01 provider credentials. Settings are
read from the server's YAML configuration file.
"""
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import SSLConfigError
from .hosts import get_all_domains


logger = logging.getLogger(__name__)

# Config file location
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
SERVER_CONFIG_FILE = CONFIG_DIR / "server.yml"

DEFAULT_CHALLENGE = "http-01"

ChallengeType = Literal["http-01", "dns-01", "tls-alpn-01"]


def _normalize_domain(value: str) -> str:
    """Strip whitespace, scheme and trailing slash from a domain."""
    value = value.strip().lower()
    # Remove protocol if accidentally included
    if value.startswith("http://"):
        value = value[7:]
    elif value.startswith("https://"):
        value = value[8:]
    return value.rstrip("/")


class DNS01Config(BaseModel):
    """DNS-01 challenge provider settings."""

    # Registry id of the DNS provider (e.g. "cloudflare", "rfc2136")
    provider: str = ""
    # Credential Vault envelope holding the provider credentials
    credentials_encrypted: str = ""
    # RFC 3339 timestamp of the last successful credential validation
    validated_at: str = ""

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("credentials_encrypted")
    @classmethod
    def validate_credentials(cls, v: str) -> str:
        return v.strip()


class LetsEncryptConfig(BaseModel):
    """Let's Encrypt / ACME settings."""

    enabled: bool = False
    email: str = ""
    domains: list[str] = Field(default_factory=list)
    staging: bool = False  # Use the sandbox ACME directory
    challenge: ChallengeType = DEFAULT_CHALLENGE

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate email format."""
        if v:
            v = v.strip().lower()
        return v

    @field_validator("domains", mode="before")
    @classmethod
    def validate_domains(cls, v):
        """Accept a list or a comma-separated string, normalizing each entry."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        domains = []
        for item in v:
            domain = _normalize_domain(str(item))
            if domain and domain not in domains:
                domains.append(domain)
        return domains

    @field_validator("challenge", mode="before")
    @classmethod
    def validate_challenge(cls, v):
        if not v:
            return DEFAULT_CHALLENGE
        return str(v).strip().lower()


class SSLConfig(BaseModel):
    """TLS/SSL certificate configuration."""

    # Master enable/disable
    enabled: bool = False

    # Start the port-80 HTTP->HTTPS redirect listener
    auto_tls: bool = False

    # Manual certificate paths
    cert_file: str = ""
    key_file: str = ""

    letsencrypt: LetsEncryptConfig = Field(default_factory=LetsEncryptConfig)
    dns01: DNS01Config = Field(default_factory=DNS01Config)

    @field_validator("cert_file", "key_file")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return v.strip()

    def has_manual_certificates(self) -> bool:
        """Check if both manual certificate paths are set."""
        return bool(self.cert_file and self.key_file)

    def effective_domains(self) -> list[str]:
        """Configured ACME domains, falling back to the DOMAIN env var."""
        if self.letsencrypt.domains:
            return list(self.letsencrypt.domains)
        return get_all_domains()


def validated_at_now() -> str:
    """Current UTC time formatted for the ``validated_at`` field."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _extract_ssl_block(data: dict) -> Optional[dict]:
    """Find the ssl block at the top level, under ``ssl`` or ``server.ssl``."""
    server = data.get("server")
    if isinstance(server, dict) and isinstance(server.get("ssl"), dict):
        return server["ssl"]
    if isinstance(data.get("ssl"), dict):
        return data["ssl"]
    if "letsencrypt" in data or "cert_file" in data or "enabled" in data:
        return data
    return None


def read_ssl_config(path: Optional[Path] = None) -> SSLConfig:
    """
    Read SSL settings from the YAML config file.

    A missing file or ssl block gives the defaults. An ssl block that
    cannot be read or validated raises SSLConfigError.
    """
    path = Path(path) if path else SERVER_CONFIG_FILE

    if not path.exists():
        logger.info("[TLS-SETTINGS] No config file at %s, TLS disabled", path)
        return SSLConfig()

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SSLConfigError(f"Cannot read {path}: {e}")

    block = _extract_ssl_block(data) if isinstance(data, dict) else None
    if block is None:
        logger.info("[TLS-SETTINGS] No ssl block in %s, TLS disabled", path)
        return SSLConfig()

    try:
        config = SSLConfig(**block)
    except (ValidationError, TypeError) as e:
        raise SSLConfigError(f"Invalid ssl block in {path}: {e}")

    logger.info(
        "[TLS-SETTINGS] Loaded SSL settings from %s, enabled: %s, letsencrypt: %s",
        path, config.enabled, config.letsencrypt.enabled,
    )
    return config


def load_ssl_config(path: Optional[Path] = None) -> SSLConfig:
    """Load SSL settings from the YAML config file or return defaults."""
    try:
        return read_ssl_config(path)
    except SSLConfigError as e:
        logger.error("[TLS-SETTINGS] Failed to load SSL settings: %s", e)
        return SSLConfig()


def save_ssl_config(config: SSLConfig, path: Optional[Path] = None) -> bool:
    """
    Write the SSL block back into the YAML config file.

    The block is written where it was found (``server.ssl``, ``ssl`` or
    the top level) and other sections of the file are preserved. Returns
    True if successful.
    """
    path = Path(path) if path else SERVER_CONFIG_FILE

    try:
        data = {}
        if path.exists():
            data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            logger.warning("[TLS-SETTINGS] Cannot save SSL settings to %s: not a mapping", path)
            return False

        block = config.model_dump()
        if isinstance(data.get("server"), dict) and "ssl" in data["server"]:
            data["server"]["ssl"] = block
        elif _extract_ssl_block(data) is data:
            # Top-level block: other top-level sections stay in place
            data.update(block)
        else:
            data["ssl"] = block

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        # Restrictive permissions (contains encrypted provider credentials)
        os.chmod(path, 0o600)
        logger.info("[TLS-SETTINGS] SSL settings saved to %s", path)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.warning("[TLS-SETTINGS] Cannot save SSL settings to %s: %s", path, e)
        return False
