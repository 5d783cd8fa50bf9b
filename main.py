#!/usr/bin/env python3
"""
Gatehouse -- authentication, sessions, RBAC, and user management over REST.

Usage:
  python main.py init-db
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload

Configuration comes from environment variables or a .env file (see
core/config.py). At minimum set SECRET_KEY, or DEBUG=true for development.
"""

import argparse
import logging
import sys

from auth.roles import RoleService
from auth.sessions import SessionStore
from auth.store import RoleStore, UserStore, create_db_engine
from auth.users import UserService
from core.config import get_settings


def init_db() -> int:
    """Create the schema, seed the default roles, and create the super admin."""
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    try:
        roles = RoleStore(engine)
        created = RoleService(roles).seed_initial_roles()
        print(f"  Schema ready. {created} role(s) seeded.")

        users = UserService(UserStore(engine), roles, SessionStore(engine))
        user, was_created = users.ensure_superadmin(
            settings.superadmin_email, settings.superadmin_password, settings.superadmin_name
        )
        if was_created:
            print(f"  Super admin created: {user.email}")
            print("  [!] Change the default super admin password before exposing this server.")
        else:
            print(f"  Super admin already exists: {user.email}")
    finally:
        engine.dispose()
    return 0


def serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Authentication and user management backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py init-db
  DEBUG=true python main.py serve --reload
  SECRET_KEY=... DATABASE_URL=sqlite:///prod.db python main.py serve --host 0.0.0.0
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables, seed default roles and the super admin account")

    serve_parser = sub.add_parser("serve", help="Run the API under uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")

    if args.command == "init-db":
        sys.exit(init_db())
    sys.exit(serve(args.host, args.port, args.reload))


if __name__ == "__main__":
    main()
