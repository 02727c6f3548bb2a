"""The store-only code paths used by ``scripts/create_user.py`` must work without the web stack."""

from __future__ import annotations

import importlib
import sys
import unittest
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_WEB_MODULES = ("fastapi", "uvicorn", "starlette")


@contextmanager
def _without_web_stack() -> Iterator[None]:
    hidden: Dict[str, Optional[object]] = {name: sys.modules.get(name) for name in _WEB_MODULES}
    for name in list(sys.modules):
        if name == "userbase" or name.startswith("userbase."):
            del sys.modules[name]
    for name in _WEB_MODULES:
        sys.modules[name] = None  # type: ignore[assignment]
    try:
        yield
    finally:
        for name, module in hidden.items():
            if module is None:
                sys.modules.pop(name, None)
            else:
                sys.modules[name] = module  # type: ignore[assignment]
        for name in list(sys.modules):
            if name == "userbase" or name.startswith("userbase."):
                del sys.modules[name]


class StoreOnlyImportTests(unittest.TestCase):
    def test_script_modules_import_without_fastapi(self) -> None:
        with _without_web_stack():
            for module in ("userbase.config", "userbase.repository", "userbase.schema", "userbase.store"):
                importlib.import_module(module)

            self.assertNotIn("userbase.api", sys.modules)
            self.assertNotIn("userbase.controller", sys.modules)

    def test_user_can_be_created_without_fastapi(self) -> None:
        with _without_web_stack():
            repository_module = importlib.import_module("userbase.repository")
            schema_module = importlib.import_module("userbase.schema")
            store_module = importlib.import_module("userbase.store")

            schema = schema_module.UserSchema()
            with store_module.DocumentStore("sqlite://:memory:") as store:
                repository = repository_module.UserRepository(store, schema)
                repository.initialize()
                user = repository.create(schema.validate_create({"name": "Ada", "email": "ada@example.com", "age": "36"}))

                self.assertEqual(user.age, 36)
                self.assertEqual(repository.count(), 1)

            self.assertNotIn("userbase.api", sys.modules)

    def test_app_factory_needs_fastapi_only_when_called(self) -> None:
        with _without_web_stack():
            package = importlib.import_module("userbase")

            with self.assertRaises(ImportError):
                package.create_app()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
