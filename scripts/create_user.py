import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userbase.config import load_settings
from userbase.errors import PersistenceError, StoreUnavailableError, ValidationError
from userbase.repository import UserRepository
from userbase.schema import UserSchema
from userbase.store import DocumentStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user directly in the document store")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Email address for the user")
    parser.add_argument("--username", default=None, help="Optional username")
    parser.add_argument("--age", default=None, help="Optional age")
    parser.add_argument(
        "--store",
        dest="store_url",
        default=None,
        help="Store connection string (defaults to USERBASE_STORE_URL or data/userbase.sqlite3)",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML configuration file")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings(args.config)
    store_url = args.store_url or settings.store_url

    payload = {"name": args.name, "email": args.email}
    if args.username is not None:
        payload["username"] = args.username
    if args.age is not None:
        payload["age"] = args.age

    schema = UserSchema(settings.schema)
    try:
        record = schema.validate_create(payload)
    except ValidationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    try:
        with DocumentStore(store_url, timeout=settings.store_timeout) as store:
            repository = UserRepository(store, schema)
            repository.initialize()
            user = repository.create(record)
    except (PersistenceError, StoreUnavailableError) as exc:  # duplicates, unreachable store
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    print(json.dumps(user.to_dict(), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
