"""
Credential Vault for DNS provider secrets.

Credentials are serialized to JSON and sealed with AES-256-GCM under a key
derived from the server secret with scrypt. The stored envelope is

    base64( salt[16] || nonce[12] || ciphertext || tag[16] )

so every envelope carries its own salt and nonce.
"""
import base64
import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import TLSError


SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32  # AES-256

# scrypt cost parameters (n=2^15, r=8, p=1 uses 32 MiB per derivation)
SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1


class CredentialDecryptionError(TLSError):
    """Encrypted credentials could not be decoded or authenticated."""

    pass


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive the AES key from a password and salt."""
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(password.encode("utf-8"))


def encrypt_credentials(credentials: dict[str, str], password: str) -> str:
    """
    Encrypt a credentials map.

    Args:
        credentials: Provider credential fields (field name -> value)
        password: Secret used to derive the encryption key

    Returns:
        Base64 envelope suitable for ``dns01.credentials_encrypted``
    """
    plaintext = json.dumps(credentials, sort_keys=True, separators=(",", ":")).encode("utf-8")

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = _derive_key(password, salt)

    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def decrypt_credentials(envelope: str, password: str) -> dict[str, str]:
    """
    Decrypt a credentials envelope produced by :func:`encrypt_credentials`.

    Raises:
        CredentialDecryptionError: If the envelope is not valid base64, is
            truncated, fails authentication (wrong password or tampered
            data), or does not hold a JSON object.
    """
    try:
        combined = base64.b64decode(envelope.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise CredentialDecryptionError(f"failed to decode encrypted credentials: {e}") from e

    if len(combined) < SALT_SIZE:
        raise CredentialDecryptionError("invalid encrypted data: too short")
    if len(combined) < SALT_SIZE + NONCE_SIZE:
        raise CredentialDecryptionError("invalid encrypted data: missing nonce")

    salt = combined[:SALT_SIZE]
    nonce = combined[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    ciphertext = combined[SALT_SIZE + NONCE_SIZE:]

    key = _derive_key(password, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise CredentialDecryptionError("failed to decrypt credentials: authentication failed") from e

    try:
        credentials = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CredentialDecryptionError(f"failed to unmarshal credentials: {e}") from e

    if not isinstance(credentials, dict):
        raise CredentialDecryptionError("failed to unmarshal credentials: not an object")

    return {str(k): str(v) for k, v in credentials.items()}
