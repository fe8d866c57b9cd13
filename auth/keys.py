"""
auth/keys.py -- RSA signing key generation and private key loading.

Key pair:
  2048-bit RSA, public exponent 65537, generated with `cryptography`.
  Public key:  SubjectPublicKeyInfo PEM ("BEGIN PUBLIC KEY").
  Private key: PKCS8 PEM ("BEGIN PRIVATE KEY"), or, when encrypted,
               PKCS8 PBES2/AES-256-CBC PEM ("BEGIN ENCRYPTED PRIVATE KEY")
               with the session secret as passphrase.

Session secret:
  secrets.token_hex(32) -- 256 random bits as 64 hex characters. Stored as
  `sessionSecret` and doubles as the private key passphrase. Losing it locks
  an encrypted private key for good; rotate by regenerating both together.

Logging:
  The private key and the session secret never reach a log line. Only the
  first PEM line and a 16-character secret preview are logged.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from auth.errors import KeyMaterialError, SigningError
from auth.models import KeyMaterial
from auth.store import KeyStore

logger = logging.getLogger("authservice.keys")

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
_PREVIEW_CHARS = 16


def generate_session_secret() -> str:
    return secrets.token_hex(32)


def preview(secret: str) -> str:
    """Truncated form of a secret that is safe to print."""
    return f"{secret[:_PREVIEW_CHARS]}..."


def generate_key_pair(passphrase: str | None = None) -> KeyMaterial:
    """Generate a fresh RSA key pair, optionally encrypting the private key.

    The passphrase is not stored on the returned KeyMaterial; the caller
    persists it separately as the session secret.
    """
    private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)

    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()

    private_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    ).decode("ascii")

    public_pem = (
        private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )

    return KeyMaterial(public_key=public_pem, private_key=private_pem, encrypted=bool(passphrase))


def generate_keys(store: KeyStore, encrypted: bool = False) -> KeyMaterial:
    """Generate a session secret and key pair and persist both (the Key Generator).

    Idempotent by upsert: rerunning replaces the previous key pair and secret,
    which is how keys are rotated. Every token signed with the old key stops
    verifying immediately. Rotate during a maintenance window.

    Any failure propagates. Nothing is written until both values exist, and
    both records are written in one transaction.
    """
    session_secret = generate_session_secret()
    logger.info("Session secret generated: %s", preview(session_secret))

    logger.info("Generating %d-bit RSA key pair (encrypted=%s)", KEY_SIZE, encrypted)
    material = generate_key_pair(passphrase=session_secret if encrypted else None)
    logger.info("Public key:  %s", material.public_key.splitlines()[0])
    logger.info("Private key: %s", material.private_key.splitlines()[0])

    store.save_key_material(material, session_secret)
    logger.info("Stored certs and sessionSecret settings")

    material.passphrase = session_secret if encrypted else None
    return material


def load_signing_key(material: KeyMaterial) -> str:
    """Return an unencrypted PKCS8 PEM ready to hand to the JWT library.

    Decrypts with material.passphrase when the key is encrypted. A wrong or
    missing passphrase, or a corrupt PEM, raises SigningError. The decrypted
    PEM lives only for the duration of the signing call.
    """
    password = None
    if material.is_private_key_encrypted():
        if not material.passphrase:
            raise SigningError("private key is encrypted but no passphrase is available")
        password = material.passphrase.encode("utf-8")

    try:
        private_key = serialization.load_pem_private_key(material.private_key.encode("ascii"), password=password)
    except (ValueError, TypeError) as exc:
        raise SigningError(f"could not load private key: {exc}") from exc

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(f"private key is {type(private_key).__name__}, expected RSA")

    return private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def ensure_key_material(store: KeyStore) -> KeyMaterial:
    """Startup check: load the stored key pair and prove both halves are usable.

    Raises KeyMaterialError for anything that would make login or verify
    fail on every request: missing records, an unparsable public key, a
    private key that cannot be opened, or a key pair that does not match.
    """
    material = store.load_key_material()

    try:
        public_key = serialization.load_pem_public_key(material.public_key.encode("ascii"))
    except ValueError as exc:
        raise KeyMaterialError(f"public key is not a valid PEM: {exc}") from exc

    try:
        signing_pem = load_signing_key(material)
    except SigningError as exc:
        raise KeyMaterialError(str(exc)) from exc

    private_key = serialization.load_pem_private_key(signing_pem.encode("ascii"), password=None)
    if private_key.public_key().public_numbers() != public_key.public_numbers():
        raise KeyMaterialError("public key does not match private key")

    logger.info("Key material loaded (encrypted=%s)", material.encrypted)
    return material
