from __future__ import annotations

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userbase.errors import PersistenceError, StoreUnavailableError  # noqa: E402
from userbase.repository import UserRepository  # noqa: E402
from userbase.schema import SchemaOptions, UserSchema  # noqa: E402
from userbase.store import DocumentStore  # noqa: E402


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[DocumentStore]:
    store = DocumentStore(f"sqlite:///{tmp_path / 'userbase.sqlite3'}")
    store.open()
    yield store
    store.close()


@pytest.fixture()
def repository(store: DocumentStore) -> UserRepository:
    repo = UserRepository(store, UserSchema())
    repo.initialize()
    return repo


def _create(repository: UserRepository, **payload: object):
    return repository.create(repository.schema.validate_create(payload))


def test_create_then_find_by_id_round_trips(repository: UserRepository) -> None:
    payload = {"name": "harsh", "email": "harsh@gmail.com", "username": "harsh", "age": 27}
    user = _create(repository, **payload)

    found = repository.find_by_id(user.id)

    assert found == user
    assert found is not None
    body = found.to_dict()
    assert body.pop("id") == user.id
    assert body.pop("createdAt") == body.pop("updatedAt")
    assert body == payload


def test_update_overwrites_only_patched_keys(repository: UserRepository) -> None:
    user = _create(repository, name="harsh", email="harsh@gmail.com", username="harsh", age=27)

    updated = repository.update_by_id(user.id, {"name": "harsh vadi"})

    assert updated is not None
    refreshed = repository.find_by_id(user.id)
    assert refreshed == updated
    assert refreshed.name == "harsh vadi"
    assert (refreshed.email, refreshed.username, refreshed.age) == (user.email, user.username, user.age)
    assert refreshed.created_at == user.created_at


def test_update_can_return_previous_record(repository: UserRepository) -> None:
    user = _create(repository, name="harsh", email="harsh@gmail.com")

    previous = repository.update_by_id(user.id, {"name": "harsh vadi"}, return_updated=False)

    assert previous == user
    current = repository.find_by_id(user.id)
    assert current is not None and current.name == "harsh vadi"


def test_delete_makes_record_unresolvable(repository: UserRepository) -> None:
    user = _create(repository, name="harsh", email="harsh@gmail.com")

    removed = repository.delete_by_id(user.id)

    assert removed == user
    assert repository.find_by_id(user.id) is None
    assert repository.delete_by_id(user.id) is None
    assert repository.update_by_id(user.id, {"name": "ghost"}) is None


def test_find_all_returns_every_live_record_once(repository: UserRepository) -> None:
    created = [_create(repository, name=f"user {i}", email=f"user{i}@example.com") for i in range(5)]
    repository.delete_by_id(created[2].id)

    listed = repository.find_all()

    assert sorted(user.id for user in listed) == sorted(user.id for user in created if user is not created[2])
    assert repository.find_all({"name": "nobody"}) == []


def test_filter_operations_act_on_first_match(repository: UserRepository) -> None:
    first = _create(repository, name="twin", email="one@example.com", username="twin")
    second = _create(repository, name="twin", email="two@example.com", username="twin")

    assert repository.find_one({"username": "twin"}) == first
    updated = repository.update_one({"username": "twin"}, {"age": 40})
    assert updated is not None and updated.id == first.id

    removed = repository.delete_one({"username": "twin"})
    assert removed is not None and removed.id == first.id
    assert repository.find_all({"username": "twin"}) == [second]


def test_duplicate_email_is_rejected(repository: UserRepository) -> None:
    first = _create(repository, name="harsh", email="harsh@gmail.com")

    with pytest.raises(PersistenceError) as excinfo:
        _create(repository, name="someone else", email="Harsh@Gmail.com")

    assert excinfo.value.field == "email"
    assert repository.find_by_id(first.id) == first
    assert repository.count() == 1


def test_update_cannot_take_an_existing_email(repository: UserRepository) -> None:
    _create(repository, name="harsh", email="harsh@gmail.com")
    other = _create(repository, name="other", email="other@example.com")

    with pytest.raises(PersistenceError):
        repository.update_by_id(other.id, {"email": "harsh@gmail.com"})

    assert repository.find_by_id(other.id) == other


def test_concurrent_delete_surfaces_as_absence(repository: UserRepository) -> None:
    user = _create(repository, name="harsh", email="harsh@gmail.com")

    assert repository.find_by_id(user.id) is not None
    repository.delete_by_id(user.id)

    assert repository.update_by_id(user.id, {"name": "late"}) is None


def test_parallel_creates_with_same_email_admit_one(repository: UserRepository) -> None:
    def attempt(index: int) -> bool:
        try:
            _create(repository, name=f"racer {index}", email="race@example.com")
        except PersistenceError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))

    assert outcomes.count(True) == 1
    assert repository.count({"email": "race@example.com"}) == 1


def test_minimal_schema_allows_duplicates_and_skips_timestamps(store: DocumentStore) -> None:
    repository = UserRepository(store, UserSchema(SchemaOptions.minimal()))
    repository.initialize()

    first = _create(repository, name="harsh", email="harsh@gmail.com", username="harsh")
    second = _create(repository, name="harsh", email="harsh@gmail.com", username="harsh")

    assert first.id != second.id
    assert first.created_at is None
    assert "createdAt" not in first.to_dict()


def test_enabling_uniqueness_over_duplicates_fails(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'dupes.sqlite3'}"
    with DocumentStore(url) as store:
        relaxed = UserRepository(store, UserSchema(SchemaOptions(unique_email=False)))
        relaxed.initialize()
        _create(relaxed, name="a", email="same@example.com")
        _create(relaxed, name="b", email="same@example.com")

    with DocumentStore(url) as store:
        strict = UserRepository(store, UserSchema(SchemaOptions(unique_email=True)))
        with pytest.raises(PersistenceError):
            strict.initialize()


def test_index_left_by_stricter_settings_still_names_the_field(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'leftover.sqlite3'}"
    with DocumentStore(url) as store:
        strict = UserRepository(store, UserSchema(SchemaOptions(unique_email=True, unique_username=True)))
        strict.initialize()
        _create(strict, name="a", email="a@example.com", username="taken")

    with DocumentStore(url) as store:
        relaxed = UserRepository(store, UserSchema(SchemaOptions(unique_email=False)))
        relaxed.initialize()
        with pytest.raises(PersistenceError) as excinfo:
            _create(relaxed, name="b", email="b@example.com", username="taken")

    assert excinfo.value.field == "username"
    assert str(excinfo.value) == "A user with that username already exists"


def test_unavailable_store_raises(store: DocumentStore, repository: UserRepository) -> None:
    store.close()

    with pytest.raises(StoreUnavailableError):
        repository.find_all()
    with pytest.raises(StoreUnavailableError):
        repository.find_by_id("anything")
