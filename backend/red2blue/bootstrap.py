# red2blue/bootstrap.py
from __future__ import annotations

"""
Out-of-band admin provisioning. Run on the server, never exposed over HTTP:

    red2blue-admin create --email coach@example.com --username headcoach
    red2blue-admin promote --email someone@example.com --role coach

Passwords are prompted for when --password is omitted.
"""

import argparse
import getpass
import sys
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from red2blue import auth, models
from red2blue.database import Base, SessionLocal, engine
from red2blue.logging_setup import configure_logging
from red2blue.tiers import ROLE_ADMIN, TIER_ULTIMATE, VALID_ROLES, apply_tier, normalize_role


class ProvisionError(Exception):
    pass


def provision_admin(db: Session, *, email: str, username: str, password: str) -> models.User:
    """
    Creates an admin, or promotes the existing account with that email.
    Admins get ultimate so every tiered screen is reachable while testing.
    """
    email_n = email.strip().lower()
    if len(password or "") < 8:
        raise ProvisionError("Password must be at least 8 characters")

    user = db.scalar(select(models.User).where(func.lower(models.User.email) == email_n))
    if user is None:
        if db.scalar(select(models.User).where(models.User.username == username.strip())):
            raise ProvisionError(f"Username '{username}' is taken")
        user = models.User(
            email=email_n,
            username=username.strip(),
            hashed_password=auth.hash_password(password),
        )
        db.add(user)
        created = True
    else:
        user.hashed_password = auth.hash_password(password)
        created = False

    user.role = ROLE_ADMIN
    user.is_active = True
    apply_tier(user, TIER_ULTIMATE)
    db.commit()
    db.refresh(user)

    logger.info("admin {} {}", user.email, "created" if created else "promoted")
    return user


def set_role(db: Session, *, email: str, role: str) -> models.User:
    if role not in VALID_ROLES:
        raise ProvisionError(f"Unknown role '{role}'")
    user = db.scalar(select(models.User).where(func.lower(models.User.email) == email.strip().lower()))
    if user is None:
        raise ProvisionError(f"No user with email {email}")
    user.role = normalize_role(role)
    db.commit()
    db.refresh(user)
    logger.info("user {} role set to {}", user.email, user.role)
    return user


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="red2blue-admin", description="Provision Red2Blue staff accounts.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create (or promote) an admin account")
    create.add_argument("--email", required=True)
    create.add_argument("--username", required=True)
    create.add_argument("--password", help="Prompted for if omitted")

    promote = sub.add_parser("promote", help="Change an existing user's role")
    promote.add_argument("--email", required=True)
    promote.add_argument("--role", required=True, choices=VALID_ROLES)

    args = parser.parse_args(argv)
    configure_logging()
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if args.command == "create":
            password = args.password or getpass.getpass("Admin password: ")
            provision_admin(db, email=args.email, username=args.username, password=password)
        else:
            set_role(db, email=args.email, role=args.role)
    except ProvisionError as e:
        logger.error(str(e))
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
