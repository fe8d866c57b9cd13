"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores and routes do
the work; these classes own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A row of the users table.

    Column names in the database follow the Wiki.js schema (isActive,
    providerKey, ...) so the service can run against an existing Wiki.js
    database. Only provider_key == "local" users have a usable password.
    """

    email: str
    name: str
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    is_verified: bool = True
    provider_key: str = "local"
    created_at: str | None = None


@dataclass
class Group:
    name: str
    id: int | None = None


def is_encrypted_pem(pem: str) -> bool:
    """True when the first PEM line says ENCRYPTED (PKCS8 or legacy PKCS1)."""
    return "ENCRYPTED" in pem.splitlines()[0] if pem else False


@dataclass
class KeyMaterial:
    """The RSA key pair used to sign and verify tokens.

    Stored as the `certs` settings record. When `encrypted` is True the
    private PEM is PKCS8-encrypted and `passphrase` holds the session secret
    needed to open it. passphrase is never persisted with the certs record --
    KeyStore.load_key_material() fills it in from `sessionSecret`.
    """

    public_key: str
    private_key: str
    encrypted: bool = False
    passphrase: str | None = field(default=None, repr=False)

    def is_private_key_encrypted(self) -> bool:
        """The explicit flag or the PEM header; either one is enough."""
        return self.encrypted or is_encrypted_pem(self.private_key)


@dataclass
class Claims:
    """The claim set carried by every issued token. Nothing more, nothing less."""

    id: int
    email: str
    name: str
    groups: list[int]
    iat: int
    exp: int
    aud: str
    iss: str

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "groups": list(self.groups),
            "iat": self.iat,
            "exp": self.exp,
            "aud": self.aud,
            "iss": self.iss,
        }

    def user_info(self) -> dict:
        """Identity subset returned to clients by /api/login and /api/verify."""
        return {"id": self.id, "email": self.email, "name": self.name, "groups": list(self.groups)}


@dataclass
class IssuedToken:
    token: str
    claims: Claims
