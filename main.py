"""Command-line interface for the userbase service."""

from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Sequence

import httpx

from userbase.config import Settings, load_settings
from userbase.errors import PersistenceError, StoreUnavailableError
from userbase.repository import UserRepository
from userbase.schema import UserSchema
from userbase.store import DocumentStore

logger = logging.getLogger("userbase.main")

_DEFAULT_SERVICE_URL = "http://127.0.0.1:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Userbase service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERBASE_CONFIG or config/userbase.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Open the document store and create its indexes")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default from configuration)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listening port (default from configuration)")

    users_parser = subparsers.add_parser("users", help="Query a running service")
    users_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running service (default: {_DEFAULT_SERVICE_URL})",
    )
    users_sub = users_parser.add_subparsers(dest="users_command")
    users_parser.set_defaults(users_command="list")
    list_parser = users_sub.add_parser("list", help="List users, optionally filtered")
    list_parser.add_argument(
        "--where",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Equality filter; may be repeated",
    )
    show_parser = users_sub.add_parser("show", help="Show a single user")
    show_parser.add_argument("user_id", help="Identifier of the user")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "users"}

    leading: List[str] = []
    rest = list(args_list)
    if len(rest) >= 2 and rest[0] == "--config":
        leading, rest = rest[:2], rest[2:]

    if not rest:
        rest = ["serve"]
    else:
        first = rest[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *rest])
        if first not in known_commands:
            if any(flag in rest for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *rest])
            rest = ["serve", *rest]

    return parser.parse_args([*leading, *rest])


def _parse_where(pairs: Sequence[str]) -> Dict[str, str]:
    criteria: Dict[str, str] = {}
    for pair in pairs:
        field, sep, value = pair.partition("=")
        if not sep or not field.strip():
            raise SystemExit(f"Invalid filter {pair!r}; expected FIELD=VALUE")
        criteria[field.strip()] = value
    return criteria


def _initialise_store(settings: Settings) -> DocumentStore:
    store = DocumentStore(settings.store_url, timeout=settings.store_timeout)
    store.open()
    try:
        UserRepository(store, UserSchema(settings.schema)).initialize()
    except (PersistenceError, StoreUnavailableError):
        store.close()
        raise
    logger.info("Document store initialised at %s", store.path)
    return store


def _serve(settings: Settings, *, host: str | None, port: int | None) -> None:
    from userbase.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting userbase on http://%s:%s", bind_host, bind_port)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level=settings.log_level.lower(),
    )


def _print_users(users: List[Dict[str, Any]]) -> None:
    if not users:
        print("No users matched.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<24}  {'Name':<24}  {'Email':<32}  Username")
    print("-" * 96)
    for user in users:
        username = user.get("username") or "-"
        print(f"{user['id']:<24}  {user['name']:<24}  {user['email']:<32}  {username}")


def _run_users_command(args: argparse.Namespace) -> int:
    base_url = args.service_url.rstrip("/")
    try:
        with httpx.Client(base_url=base_url, timeout=10.0) as client:
            if args.users_command == "show":
                response = client.get(f"/users/{args.user_id}")
            else:
                response = client.get("/users", params=_parse_where(getattr(args, "where", [])))
    except httpx.HTTPError as exc:
        print(f"Failed to contact {base_url}: {exc}", file=sys.stderr)
        return 1

    if response.status_code == 404:
        print("User not found.", file=sys.stderr)
        return 1
    if response.status_code >= 400:
        message = response.json().get("message", response.text) if response.content else response.reason_phrase
        print(f"Request failed ({response.status_code}): {message}", file=sys.stderr)
        return 1

    payload = response.json()
    if args.users_command == "show":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _print_users(payload)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = load_settings(args.config)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(message)s")

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        try:
            store = _initialise_store(settings)
        except (PersistenceError, StoreUnavailableError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        store.close()
        print("Document store initialisation complete.")
    elif args.command == "users":
        return _run_users_command(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
