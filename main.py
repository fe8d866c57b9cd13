#!/usr/bin/env python3
"""
Auth service administration CLI -- signing keys, users, groups, memberships.

Usage:
  python main.py keys generate [--encrypted]
  python main.py keys show
  python main.py user create alice@example.com "Alice Johnson"
  python main.py user list
  python main.py user set-password alice@example.com
  python main.py user activate|deactivate|delete alice@example.com
  python main.py group create|delete dev
  python main.py group list
  python main.py membership add|remove alice@example.com dev
  python main.py membership list alice@example.com
  python main.py seed-demo

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (see core/config.py).
                --database-url overrides it.

Only use the user/group/membership commands against a standalone auth
database. A Wiki.js database should be managed through Wiki.js itself; there
only `keys` is safe, and regenerating keys logs every Wiki.js user out.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import KeyMaterialError
from auth.keys import generate_keys, preview
from auth.models import User
from auth.store import KeyStore, UserStore, create_db_engine
from auth.tokens import hash_password
from core.config import get_settings

logger = logging.getLogger("authservice.cli")

MIN_PASSWORD_LENGTH = 8

DEMO_GROUPS = ["admin", "mgmt", "dev", "view"]
DEMO_PASSWORD = "password123"  # nosec B105 -- documented demo credential
DEMO_USERS = [
    ("admin@example.com", "Admin User", ["admin"]),
    ("alice@example.com", "Alice Johnson", ["mgmt", "dev"]),
    ("bob@example.com", "Bob Smith", ["dev"]),
    ("carol@example.com", "Carol Williams", ["view"]),
    ("guest@example.com", "Guest User", []),
]


class CommandError(Exception):
    """A command failed in a way the user can fix. Printed without a traceback."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_password(given: Optional[str]) -> str:
    if given is None:
        given = getpass.getpass("Password: ")
        if getpass.getpass("Confirm password: ") != given:
            raise CommandError("Passwords do not match.")
    if len(given) < MIN_PASSWORD_LENGTH:
        raise CommandError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return given


def _require_user(store: UserStore, email: str) -> User:
    user = store.get_by_email(email)
    if user is None:
        raise CommandError(f"User not found: {email}")
    return user


def _require_group_id(store: UserStore, name: str) -> int:
    group = store.get_group(name)
    if group is None:
        raise CommandError(f"Group not found: {name}")
    return group.id


# ---------------------------------------------------------------------------
# keys
# ---------------------------------------------------------------------------


def cmd_keys_generate(args, key_store: KeyStore, user_store: UserStore) -> None:
    material = generate_keys(key_store, encrypted=args.encrypted)
    print("Key generation complete.")
    print(f"  Key type:  {'encrypted' if material.encrypted else 'unencrypted'} RSA-2048")
    if material.encrypted:
        print("  Private key is encrypted with the session secret.")
    else:
        print("  Private key is unencrypted (use --encrypted for production).")
    print("  Existing tokens signed with the previous key are now invalid.")


def cmd_keys_show(args, key_store: KeyStore, user_store: UserStore) -> None:
    try:
        material = key_store.load_key_material()
    except KeyMaterialError as exc:
        raise CommandError(f"No usable key material: {exc.detail}") from exc
    secret = key_store.load_session_secret()
    print(f"Settings present: {', '.join(key_store.list_setting_keys())}")
    print(f"Private key encrypted: {material.encrypted}")
    print(f"Session secret: {preview(secret) if secret else '(missing)'}")
    print(material.public_key.rstrip())


# ---------------------------------------------------------------------------
# user
# ---------------------------------------------------------------------------


def cmd_user_create(args, key_store: KeyStore, user_store: UserStore) -> None:
    password = _read_password(args.password)
    try:
        user_id = user_store.create_user(
            User(email=args.email, name=args.name, hashed_password=hash_password(password))
        )
    except IntegrityError as exc:
        raise CommandError(f"User already exists: {args.email}") from exc
    print(f"Created user {args.email} (id={user_id})")


def cmd_user_list(args, key_store: KeyStore, user_store: UserStore) -> None:
    users = user_store.list_users()
    if not users:
        print("No users.")
        return
    for user in users:
        groups = ", ".join(g.name for g in user_store.get_groups_for_user(user.id)) or "-"
        status = "active" if user.is_active else "inactive"
        print(f"{user.id:>5}  {user.email:<32} {user.name:<24} {status:<8}  {groups}")


def cmd_user_set_password(args, key_store: KeyStore, user_store: UserStore) -> None:
    _require_user(user_store, args.email)
    password = _read_password(args.password)
    user_store.set_password(args.email, hash_password(password))
    print(f"Password updated for {args.email}")


def cmd_user_activate(args, key_store: KeyStore, user_store: UserStore) -> None:
    if not user_store.set_active(args.email, True):
        raise CommandError(f"User not found: {args.email}")
    print(f"Activated {args.email}")


def cmd_user_deactivate(args, key_store: KeyStore, user_store: UserStore) -> None:
    if not user_store.set_active(args.email, False):
        raise CommandError(f"User not found: {args.email}")
    print(f"Deactivated {args.email} (tokens already issued stay valid until they expire)")


def cmd_user_delete(args, key_store: KeyStore, user_store: UserStore) -> None:
    if not user_store.delete_user(args.email):
        raise CommandError(f"User not found: {args.email}")
    print(f"Deleted {args.email}")


# ---------------------------------------------------------------------------
# group
# ---------------------------------------------------------------------------


def cmd_group_create(args, key_store: KeyStore, user_store: UserStore) -> None:
    try:
        group_id = user_store.create_group(args.name)
    except IntegrityError as exc:
        raise CommandError(f"Group already exists: {args.name}") from exc
    print(f"Created group {args.name} (id={group_id})")


def cmd_group_list(args, key_store: KeyStore, user_store: UserStore) -> None:
    groups = user_store.list_groups()
    if not groups:
        print("No groups.")
        return
    for group in groups:
        print(f"{group.id:>5}  {group.name}")


def cmd_group_delete(args, key_store: KeyStore, user_store: UserStore) -> None:
    if not user_store.delete_group(args.name):
        raise CommandError(f"Group not found: {args.name}")
    print(f"Deleted group {args.name}")


# ---------------------------------------------------------------------------
# membership
# ---------------------------------------------------------------------------


def cmd_membership_add(args, key_store: KeyStore, user_store: UserStore) -> None:
    user = _require_user(user_store, args.email)
    group_id = _require_group_id(user_store, args.group)
    if user_store.add_membership(user.id, group_id):
        print(f"Added {args.email} to {args.group}")
    else:
        print(f"{args.email} is already in {args.group}")


def cmd_membership_remove(args, key_store: KeyStore, user_store: UserStore) -> None:
    user = _require_user(user_store, args.email)
    group_id = _require_group_id(user_store, args.group)
    if not user_store.remove_membership(user.id, group_id):
        raise CommandError(f"{args.email} is not in {args.group}")
    print(f"Removed {args.email} from {args.group}")


def cmd_membership_list(args, key_store: KeyStore, user_store: UserStore) -> None:
    user = _require_user(user_store, args.email)
    groups = user_store.get_groups_for_user(user.id)
    if not groups:
        print(f"{args.email} has no groups.")
        return
    for group in groups:
        print(f"{group.id:>5}  {group.name}")


# ---------------------------------------------------------------------------
# seed-demo
# ---------------------------------------------------------------------------


def cmd_seed_demo(args, key_store: KeyStore, user_store: UserStore) -> None:
    """Create the demo groups and users. Existing rows are left untouched."""
    group_ids: dict[str, int] = {}
    for name in DEMO_GROUPS:
        existing = user_store.get_group(name)
        group_ids[name] = existing.id if existing else user_store.create_group(name)

    hashed = hash_password(DEMO_PASSWORD)
    for email, name, groups in DEMO_USERS:
        user = user_store.get_by_email(email)
        user_id = user.id if user else user_store.create_user(User(email=email, name=name, hashed_password=hashed))
        for group in groups:
            user_store.add_membership(user_id, group_ids[group])

    print(f"Seeded {len(DEMO_USERS)} demo users and {len(DEMO_GROUPS)} groups.")
    print(f"All demo passwords: {DEMO_PASSWORD} -- change or delete them before production use.")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authservice",
        description="Manage signing keys, users, groups and memberships for the auth service.",
    )
    parser.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="resource", required=True)

    keys = sub.add_parser("keys", help="RSA signing keys").add_subparsers(dest="action", required=True)
    gen = keys.add_parser("generate", help="Generate (or rotate) the RSA key pair and session secret")
    gen.add_argument("--encrypted", action="store_true", help="Encrypt the private key with the session secret")
    gen.set_defaults(func=cmd_keys_generate)
    keys.add_parser("show", help="Show the public key and key status").set_defaults(func=cmd_keys_show)

    user = sub.add_parser("user", help="User accounts").add_subparsers(dest="action", required=True)
    create = user.add_parser("create", help="Create a local user")
    create.add_argument("email")
    create.add_argument("name")
    create.add_argument("--password", help="Password (prompted when omitted)")
    create.set_defaults(func=cmd_user_create)
    user.add_parser("list", help="List users").set_defaults(func=cmd_user_list)
    set_pw = user.add_parser("set-password", help="Change a user's password")
    set_pw.add_argument("email")
    set_pw.add_argument("--password", help="Password (prompted when omitted)")
    set_pw.set_defaults(func=cmd_user_set_password)
    for action, func in (
        ("activate", cmd_user_activate),
        ("deactivate", cmd_user_deactivate),
        ("delete", cmd_user_delete),
    ):
        p = user.add_parser(action, help=f"{action.capitalize()} a user")
        p.add_argument("email")
        p.set_defaults(func=func)

    group = sub.add_parser("group", help="Groups").add_subparsers(dest="action", required=True)
    for action, func in (("create", cmd_group_create), ("delete", cmd_group_delete)):
        p = group.add_parser(action, help=f"{action.capitalize()} a group")
        p.add_argument("name")
        p.set_defaults(func=func)
    group.add_parser("list", help="List groups").set_defaults(func=cmd_group_list)

    membership = sub.add_parser("membership", help="Group memberships").add_subparsers(dest="action", required=True)
    for action, func in (("add", cmd_membership_add), ("remove", cmd_membership_remove)):
        p = membership.add_parser(action, help=f"{action.capitalize()} a user to/from a group")
        p.add_argument("email")
        p.add_argument("group")
        p.set_defaults(func=func)
    list_p = membership.add_parser("list", help="List a user's groups")
    list_p.add_argument("email")
    list_p.set_defaults(func=cmd_membership_list)

    sub.add_parser("seed-demo", help="Create demo users and groups").set_defaults(func=cmd_seed_demo)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    db_url = args.database_url or get_settings().database_url
    engine = create_db_engine(db_url)
    key_store = KeyStore(engine=engine)
    user_store = UserStore(engine=engine)
    try:
        args.func(args, key_store, user_store)
    except CommandError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except SQLAlchemyError as exc:
        logger.error("Database error: %s", exc)
        return 1
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
