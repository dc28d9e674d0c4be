"""Command-line interface for the user service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from userservice.config import ServiceSettings, load_settings
from userservice.database import Database
from userservice.errors import UserServiceError
from userservice.service import build_service

logger = logging.getLogger("userservice.main")

MIN_PASSWORD_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the identity database")
    subparsers.add_parser("list-users", help="List registered users")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP user service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the API (default: 8080)")

    create_parser = subparsers.add_parser("create-user", help="Register a user from the command line")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument("--phone", default=None, help="Optional phone number")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list-users", "create-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: ServiceSettings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: ServiceSettings, database: Database, host: str, port: int) -> None:
    from userservice.api import create_app
    import uvicorn

    # Building the app validates the signing secret before any request is accepted.
    app = create_app(settings=settings, database=database)
    logger.info("Starting user service on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        name = user.name or "<no name>"
        print(f"{user.id:>4}  {name:<24}  {user.email:<32}  {created}")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(settings: ServiceSettings, database: Database, args: argparse.Namespace) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    service = build_service(settings, database, issue_tokens=False)
    try:
        user = service.register(args.name, args.email, args.phone, password)
    except UserServiceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name or '<no name>'} <{user.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = load_settings()
        database = _initialise_database(settings)

        if args.command == "serve":
            _serve(settings=settings, database=database, host=args.host, port=args.port)
        elif args.command == "list-users":
            _list_users(database)
        elif args.command == "create-user":
            return _create_user(settings, database, args)
        elif args.command == "init-db":
            print("Database initialisation complete.")
    except UserServiceError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
