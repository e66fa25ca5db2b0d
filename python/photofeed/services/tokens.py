"""Album token canonicalization and encryption.

Album owners may publish an encrypted token instead of the real provider
token. Encrypted tokens carry an "e-" prefix followed by urlsafe base64
(unpadded) of nonce || ciphertext, sealed with XSalsa20-Poly1305 via
PyNaCl SecretBox under TOKEN_ENCRYPTION_KEY.

The canonical token is the decrypted provider token. It keys the album
cache, reload flags, tracked tokens and augmentation records, so the
plain and encrypted forms of one album share a single cache entry.

Security invariants:
- Never log plaintext or encrypted tokens; only fingerprints
- Master key is validated on first use (32 bytes)
- A fresh random nonce is used for every encryption
"""

import base64
import binascii
from functools import lru_cache

from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.secret import SecretBox
from nacl.utils import random as random_bytes

from photofeed.config import get_settings
from photofeed.errors import ApiError, ApiErrorCode, InvalidRequestError
from photofeed.logging import get_logger
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)

ENCRYPTED_TOKEN_PREFIX = "e-"

# XSalsa20-Poly1305 sizes
NONCE_SIZE = SecretBox.NONCE_SIZE
MASTER_KEY_SIZE = SecretBox.KEY_SIZE

MAX_TOKEN_LENGTH = 256


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


@lru_cache(maxsize=1)
def _get_master_key() -> bytes:
    """Load and validate the master key from settings.

    Returns:
        The 32-byte master key.

    Raises:
        CryptoError: If the key is missing, invalid base64, or wrong size.
    """
    key_b64 = get_settings().token_encryption_key
    if not key_b64:
        raise CryptoError("TOKEN_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"TOKEN_ENCRYPTION_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"TOKEN_ENCRYPTION_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )

    return key


def require_master_key() -> bytes:
    """Load and validate the master encryption key.

    Raises:
        CryptoError: If the key is missing or invalid.
    """
    return _get_master_key()


def clear_master_key_cache() -> None:
    """Clear the cached master key. Useful for testing or key rotation."""
    _get_master_key.cache_clear()


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def encrypt_token(token: str) -> str:
    """Encrypt a provider token into its public "e-" form.

    Raises:
        CryptoError: If the master key is missing or encryption fails.
    """
    box = SecretBox(require_master_key())
    nonce = random_bytes(NONCE_SIZE)
    sealed = box.encrypt(token.encode("utf-8"), nonce)
    # EncryptedMessage is nonce || ciphertext
    return ENCRYPTED_TOKEN_PREFIX + _b64encode(bytes(sealed))


def decrypt_token(encrypted: str) -> str:
    """Decrypt an "e-" token back to the provider token.

    Raises:
        CryptoError: If the token is malformed, tampered, or sealed under another key.
    """
    if not encrypted.startswith(ENCRYPTED_TOKEN_PREFIX):
        raise CryptoError("Token is not encrypted")

    try:
        sealed = _b64decode(encrypted[len(ENCRYPTED_TOKEN_PREFIX) :])
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Encrypted token is not valid base64") from e

    if len(sealed) <= NONCE_SIZE:
        raise CryptoError("Encrypted token is too short")

    box = SecretBox(require_master_key())
    try:
        plaintext = box.decrypt(sealed)
    except NaclCryptoError as e:
        raise CryptoError("Encrypted token failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Encrypted token payload is not text") from e


def validate_token(token: str) -> str:
    """Reject obviously invalid tokens before touching caches or upstreams.

    Raises:
        ApiError(E_INVALID_TOKEN): If the token is empty, too long, or contains a slash.
    """
    token = token.strip() if token else ""
    if not token:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TOKEN, "Album token is required")
    if len(token) > MAX_TOKEN_LENGTH:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TOKEN, "Album token is too long")
    if "/" in token:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TOKEN, "Album token is malformed")
    return token


def resolve_token(token: str) -> str:
    """Resolve a public token (plain or encrypted) to its canonical provider token.

    Raises:
        ApiError(E_INVALID_TOKEN): Malformed token or failed decryption.
        ApiError(E_ENCRYPTION_UNAVAILABLE): Encrypted token but no key configured.
    """
    token = validate_token(token)
    if not token.startswith(ENCRYPTED_TOKEN_PREFIX):
        return token

    try:
        require_master_key()
    except CryptoError as e:
        logger.error("token_encryption_unconfigured", error=str(e))
        raise ApiError(
            ApiErrorCode.E_ENCRYPTION_UNAVAILABLE, "Encrypted tokens are not supported"
        ) from e

    try:
        canonical = decrypt_token(token)
    except CryptoError as e:
        logger.info("token_decrypt_failed", token_fp=fingerprint(token), error=str(e))
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TOKEN, "Invalid encrypted token") from e

    return validate_token(canonical)


def encrypt_public_token(token: str) -> str:
    """Encrypt a provider token for publication, mapping failures to API errors.

    Raises:
        ApiError(E_INVALID_TOKEN): Invalid input token.
        ApiError(E_ENCRYPTION_UNAVAILABLE): No usable key configured.
    """
    token = validate_token(token)
    if token.startswith(ENCRYPTED_TOKEN_PREFIX):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TOKEN, "Token is already encrypted")
    try:
        return encrypt_token(token)
    except CryptoError as e:
        logger.error("token_encrypt_failed", error=str(e))
        raise ApiError(
            ApiErrorCode.E_ENCRYPTION_UNAVAILABLE, "Token encryption is not available"
        ) from e
