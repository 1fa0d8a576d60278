import logging

import pytest

from user_migration.core.exceptions import IdentityResolutionError
from user_migration.core.identity import IdentityResolver, canonical_user_id
from user_migration.core.models import CanonicalUser
from user_migration.jobs.store import InMemoryCanonicalStore


def _user(user_id: str, email: str, **profile) -> CanonicalUser:
    return CanonicalUser(user_id=user_id, email=email, full_name="", role="common", profile=dict(profile))


class DuplicateEmailStore(InMemoryCanonicalStore):
    async def query_by_email(self, email: str) -> list[CanonicalUser]:
        return [_user("user_first", email), _user("user_second", email)]


@pytest.mark.asyncio
async def test_email_match_wins_over_unmatched_legacy_id() -> None:
    store = InMemoryCanonicalStore()
    await store.insert_user(_user("user_existing", "alice@x.com"))
    resolver = IdentityResolver(store)

    found = await resolver.find_existing("Alice@X.com", "never-seen")

    assert found is not None
    assert found.user_id == "user_existing"


@pytest.mark.asyncio
async def test_legacy_id_matches_namespaced_canonical_id() -> None:
    store = InMemoryCanonicalStore()
    await store.insert_user(_user("user_abc123", "bob@x.com"))

    found = await IdentityResolver(store).find_existing("new@x.com", "abc123")

    assert found is not None
    assert found.user_id == "user_abc123"


@pytest.mark.asyncio
async def test_legacy_id_matches_profile_embedded_identifier() -> None:
    store = InMemoryCanonicalStore()
    await store.insert_user(_user("user_0f0f0f0f0f0f", "carol@x.com", legacyId="fs-42"))

    found = await IdentityResolver(store).find_existing(None, "fs-42")

    assert found is not None
    assert found.email == "carol@x.com"


@pytest.mark.asyncio
async def test_no_match_returns_none() -> None:
    assert await IdentityResolver(InMemoryCanonicalStore()).find_existing("x@x.com", "x") is None


@pytest.mark.asyncio
async def test_missing_email_and_legacy_id_is_rejected_before_querying() -> None:
    resolver = IdentityResolver(InMemoryCanonicalStore(available=False))
    with pytest.raises(IdentityResolutionError):
        await resolver.find_existing("  ", None)


@pytest.mark.asyncio
async def test_ambiguous_email_match_returns_first_and_logs(caplog) -> None:
    caplog.set_level(logging.WARNING)

    found = await IdentityResolver(DuplicateEmailStore()).find_existing("dup@x.com", None)

    assert found is not None
    assert found.user_id == "user_first"
    assert "identity_ambiguous_match" in caplog.text


def test_canonical_user_id_namespaces_safe_legacy_ids() -> None:
    assert canonical_user_id("abc") == "user_abc"
    assert canonical_user_id("user_abc") == "user_abc"


def test_canonical_user_id_generates_for_unsafe_ids() -> None:
    generated = canonical_user_id("../etc passwd")
    assert generated.startswith("user_")
    assert len(generated) == len("user_") + 12
    assert canonical_user_id(None) != canonical_user_id(None)
