"""
auth/authenticator.py -- The verify function and the signup flow.

The Authenticator is an explicit object built once in the app lifespan with
its CredentialStore, PasswordHasher and guest policy injected. Routes reach it
through app.state; nothing registers a process-wide strategy.

Security design decisions:
  Enumeration resistance: unknown names and wrong passwords both return
       GENERIC_REJECTION, and an unknown name still pays for one KDF
       derivation against a dummy salt so response time does not reveal
       whether the name exists.

  Guest bootstrap: the only write the verify path may perform. It lives in
       GuestBootstrapPolicy so it can be tested on its own and switched off
       (GUEST_BOOTSTRAP_ENABLED=false) without touching verify().

  Blocking: store lookups and the KDF are offloaded with run_in_threadpool,
       so verify() and register() never stall the event loop.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool

from auth.errors import GENERIC_REJECTION, DuplicateName, PasswordMismatch, SignupRejected
from auth.models import Principal, VerifyResult
from auth.passwords import PasswordHasher, generate_salt
from auth.store import CredentialStore

logger = logging.getLogger("catalog.auth")


class GuestBootstrapPolicy:
    """First-use provisioning of the well-known guest principal.

    The guest password is public. Only the reserved name triggers creation,
    and GUEST_BOOTSTRAP_ENABLED=false turns the policy off.
    """

    def __init__(self, username: str = "guest", password: str = "letmein", enabled: bool = True) -> None:
        self.username = username
        self.password = password
        self.enabled = enabled

    def applies_to(self, name: str) -> bool:
        return self.enabled and name == self.username

    def provision(self, store: CredentialStore) -> Principal:
        """Create the guest principal, or return it if it already exists.

        Idempotent under concurrency: if another request creates the guest
        between our lookup and insert, the DuplicateName is swallowed and the
        winner's record is returned.
        """
        try:
            principal = store.create(self.username, self.password)
        except DuplicateName:
            existing = store.find_by_name(self.username)
            if existing is None:
                raise
            return existing
        logger.info("Guest principal %r provisioned", self.username)
        return principal


class Authenticator:
    """Decides accept/reject for a (name, secret) claim.

    Usage:
        auth = Authenticator(store, hasher, GuestBootstrapPolicy())
        result = await auth.verify("alice", "s3cret")
        if result.accepted: ...
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        guest_policy: GuestBootstrapPolicy | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.guest_policy = guest_policy or GuestBootstrapPolicy(enabled=False)
        # Salt for timing equalization on unknown names.
        self._dummy_salt = generate_salt()

    async def verify(self, name: str, secret: str) -> VerifyResult:
        # Names are stored stripped by register(); match that here.
        name = (name or "").strip()
        principal = await run_in_threadpool(self._lookup, name)
        if principal is None:
            # Equalize timing -- do NOT return before running the KDF.
            await self.hasher.derive_async(secret or "-", self._dummy_salt)
            logger.info("Login rejected for %r", name)
            return VerifyResult(reason=GENERIC_REJECTION)
        if not await self.hasher.verify_async(secret, principal.salt, principal.hash):
            logger.info("Login rejected for %r", name)
            return VerifyResult(reason=GENERIC_REJECTION)
        logger.info("Login accepted for %r (id=%s)", principal.name, principal.id)
        return VerifyResult(principal=principal)

    def _lookup(self, name: str) -> Principal | None:
        principal = self.store.find_by_name(name)
        if principal is None and self.guest_policy.applies_to(name):
            principal = self.guest_policy.provision(self.store)
        return principal


async def register(store: CredentialStore, name: str, secret: str, confirmation: str) -> Principal:
    """Signup flow: validate the form and create the principal.

    Checks run in this order: blank input, name taken, password mismatch.
    A name that is free at check time but taken by the time of the INSERT
    still raises DuplicateName from the store.

    Raises:
        SignupRejected: blank name or password.
        DuplicateName: name already registered.
        PasswordMismatch: secret and confirmation differ.
    """
    name = (name or "").strip()
    if not name:
        raise SignupRejected("Username is required.")
    if not secret:
        raise SignupRejected("Password is required.")
    if await run_in_threadpool(store.find_by_name, name) is not None:
        raise DuplicateName(name)
    if secret != confirmation:
        raise PasswordMismatch()
    principal = await run_in_threadpool(store.create, name, secret)
    logger.info("Principal %r registered (id=%s)", principal.name, principal.id)
    return principal
