"""Create a user in the configured DB.

Usage:
  python scripts/create_user.py --name alice --email alice@jwt.com --password '...' --role admin
  python scripts/create_user.py --name bob --email bob@jwt.com --password '...' --role franchisee --franchise pizzaPocket

NOTE: This is intended for local/dev.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from pizza_service.config import load_config
from pizza_service.db import Database
from pizza_service.models import Role
from pizza_service.repository import Repository


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--name", required=True)
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=[r.value for r in Role], default=Role.DINER.value)
    ap.add_argument("--franchise", help="franchise name (required for --role franchisee)")
    args = ap.parse_args()

    if args.role == Role.FRANCHISEE.value and not args.franchise:
        ap.error("--franchise is required for the franchisee role")

    role = {"role": args.role}
    if args.franchise:
        role["object"] = args.franchise

    db = Database(load_config())
    try:
        u = Repository(db).add_user(
            {"name": args.name, "email": args.email, "password": args.password, "roles": [role]}
        )
    finally:
        db.close()

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
