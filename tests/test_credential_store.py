"""
tests/test_credential_store.py -- Unit tests for auth/store.py.

Covers:
  - create() persists name, salt and hash; the plaintext is never stored
  - find_by_name() / find_by_id() hit and miss
  - DuplicateName from the pre-check and from the UNIQUE constraint
  - concurrent create() for one name: exactly one winner
  - an unreachable database surfaces as StoreUnavailable
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import DuplicateName, StoreUnavailable
from auth.models import Principal
from auth.passwords import PasswordHasher
from auth.store import CredentialStore


class TestCreateAndFind:
    def test_create_assigns_id_and_hashes_secret(self, credential_store: CredentialStore) -> None:
        alice = credential_store.create("alice", "wonderland")
        assert alice.id is not None
        assert alice.name == "alice"
        assert alice.hash != "wonderland"
        assert credential_store.hasher.verify("wonderland", alice.salt, alice.hash)

    def test_find_by_name_and_id(self, credential_store: CredentialStore) -> None:
        alice = credential_store.create("alice", "wonderland")
        by_name = credential_store.find_by_name("alice")
        by_id = credential_store.find_by_id(alice.id)
        assert by_name == by_id
        assert by_name.salt == alice.salt
        assert by_name.created_at

    def test_lookup_misses_return_none(self, credential_store: CredentialStore) -> None:
        assert credential_store.find_by_name("nobody") is None
        assert credential_store.find_by_id(12345) is None

    def test_name_lookup_is_case_sensitive(self, credential_store: CredentialStore) -> None:
        credential_store.create("alice", "pw")
        assert credential_store.find_by_name("Alice") is None

    def test_each_principal_gets_its_own_salt(self, credential_store: CredentialStore) -> None:
        a = credential_store.create("a", "same-password")
        b = credential_store.create("b", "same-password")
        assert a.salt != b.salt
        assert a.hash != b.hash

    def test_count_and_has_principals(self, credential_store: CredentialStore) -> None:
        assert credential_store.has_principals() is False
        credential_store.create("a", "pw")
        credential_store.create("b", "pw")
        assert credential_store.count() == 2
        assert credential_store.has_principals() is True


class TestUniqueness:
    def test_duplicate_name_rejected(self, credential_store: CredentialStore) -> None:
        credential_store.create("alice", "one")
        with pytest.raises(DuplicateName) as excinfo:
            credential_store.create("alice", "two")
        assert excinfo.value.name == "alice"
        assert credential_store.count() == 1

    def test_unique_constraint_backs_the_check(self, credential_store: CredentialStore) -> None:
        """add() skips the pre-check; the database constraint must still refuse the row."""
        credential_store.create("alice", "one")
        with pytest.raises(DuplicateName):
            credential_store.add(Principal(name="alice", salt="00" * 16, hash="ff" * 64))

    def test_concurrent_creates_exactly_one_wins(self, credential_store: CredentialStore) -> None:
        barrier = threading.Barrier(2)

        def attempt(secret: str):
            barrier.wait()
            try:
                return credential_store.create("alice", secret)
            except DuplicateName as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, ["first", "second"]))

        created = [r for r in results if isinstance(r, Principal)]
        rejected = [r for r in results if isinstance(r, DuplicateName)]
        assert len(created) == 1
        assert len(rejected) == 1
        assert credential_store.count() == 1


class TestUnavailable:
    def test_unopenable_database_raises_store_unavailable(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'auth.db'}"
        with pytest.raises(StoreUnavailable):
            CredentialStore(url, hasher=PasswordHasher(rounds=1))
