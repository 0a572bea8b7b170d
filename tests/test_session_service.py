"""Session store tests — lookup, rotation CAS, session cap, deletion.

Learn: These exercise the store directly (no orchestrator, no audit) so
each storage-level guarantee is pinned down on its own:
1. find_by_token: selector lookup + verifier check + expiry
2. rotate: compare-and-swap on (selector, verifier hash)
3. enforce_limit / trim_excess: oldest-first batch eviction
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import update

from sessionguard.auth.tokens import generate_token_pair
from sessionguard.db.models import Session
from sessionguard.services.session_service import SessionStore
from sessionguard.services.user_service import UserStore


@pytest_asyncio.fixture()
async def user(db_session):
    user = await UserStore(db_session).create("store@example.com", "x", "Store User")
    await db_session.commit()
    return user


@pytest.fixture()
def store(db_session):
    return SessionStore(db_session, ttl_days=7, max_sessions=3, bcrypt_rounds=4)


async def _expire(db_session, session_id):
    await db_session.execute(
        update(Session)
        .where(Session.id == session_id)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    await db_session.commit()


# ═══════════════════════════════════════════════════════════
# Create / lookup
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_stores_only_verifier_hash(store, user):
    pair = generate_token_pair()
    session = await store.create(user.id, pair, "pytest", "127.0.0.1")

    assert session.token_selector == pair.selector
    assert session.token_verifier_hash != pair.verifier
    assert session.token_verifier_hash.startswith("$2")
    assert session.previous_selector is None
    assert session.expires_at - session.created_at == timedelta(days=7)


@pytest.mark.asyncio
async def test_find_by_token(store, user, db_session):
    pair = generate_token_pair()
    session = await store.create(user.id, pair)
    await db_session.commit()

    found = await store.find_by_token(pair.full_token)
    assert found is not None
    assert found.id == session.id


@pytest.mark.asyncio
async def test_find_by_token_wrong_verifier(store, user, db_session):
    pair = generate_token_pair()
    await store.create(user.id, pair)
    await db_session.commit()

    forged = f"{pair.selector}.{generate_token_pair().verifier}"
    assert await store.find_by_token(forged) is None


@pytest.mark.asyncio
async def test_find_by_token_unknown_or_malformed(store):
    assert await store.find_by_token(generate_token_pair().full_token) is None
    assert await store.find_by_token("garbage") is None


@pytest.mark.asyncio
async def test_find_by_token_expired(store, user, db_session):
    pair = generate_token_pair()
    session = await store.create(user.id, pair)
    await db_session.commit()
    await _expire(db_session, session.id)

    assert await store.find_by_token(pair.full_token) is None


# ═══════════════════════════════════════════════════════════
# Rotation
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_rotate_swaps_token_and_keeps_previous_selector(store, user, db_session):
    old = generate_token_pair()
    session = await store.create(user.id, old)
    await db_session.commit()

    new = generate_token_pair()
    expires_at = await store.rotate(session, new)
    await db_session.commit()

    assert expires_at is not None
    assert session.token_selector == new.selector
    assert session.previous_selector == old.selector
    assert session.rotated_at is not None

    assert await store.find_by_token(old.full_token) is None
    found = await store.find_by_token(new.full_token)
    assert found is not None and found.id == session.id

    reused = await store.find_by_previous_selector(old.selector)
    assert reused is not None and reused.id == session.id


@pytest.mark.asyncio
async def test_rotate_loses_race_when_row_changed(store, user, db_session):
    """If the stored verifier changed after we read it, the CAS matches 0 rows."""
    session = await store.create(user.id, generate_token_pair())
    await db_session.commit()

    # Simulate a concurrent rotation without touching the loaded object.
    await db_session.execute(
        update(Session)
        .where(Session.id == session.id)
        .values(token_verifier_hash="$2b$04$someone-else-rotated-this")
        .execution_options(synchronize_session=False)
    )

    assert await store.rotate(session, generate_token_pair()) is None


@pytest.mark.asyncio
async def test_previous_selector_keeps_one_generation(store, user, db_session):
    first = generate_token_pair()
    session = await store.create(user.id, first)
    second = generate_token_pair()
    await store.rotate(session, second)
    third = generate_token_pair()
    await store.rotate(session, third)
    await db_session.commit()

    assert session.previous_selector == second.selector
    assert await store.find_by_previous_selector(first.selector) is None
    assert await store.find_by_previous_selector(second.selector) is not None


# ═══════════════════════════════════════════════════════════
# Listing / deletion
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_for_user_oldest_first_flags_current(store, user, db_session):
    s1 = await store.create(user.id, generate_token_pair(), "agent-1")
    s2 = await store.create(user.id, generate_token_pair(), "agent-2")
    await db_session.commit()

    sessions = await store.list_for_user(user.id, current_session_id=s2.id)
    assert [s.id for s in sessions] == [s1.id, s2.id]
    assert [s.is_current for s in sessions] == [False, True]
    assert sessions[0].user_agent == "agent-1"


@pytest.mark.asyncio
async def test_list_excludes_expired(store, user, db_session):
    s1 = await store.create(user.id, generate_token_pair())
    await store.create(user.id, generate_token_pair())
    await db_session.commit()
    await _expire(db_session, s1.id)

    assert await store.count_live(user.id) == 1
    assert len(await store.list_for_user(user.id)) == 1


@pytest.mark.asyncio
async def test_delete_for_user_checks_owner(store, user, db_session):
    session = await store.create(user.id, generate_token_pair())
    await db_session.commit()

    assert await store.delete_for_user(uuid.uuid4(), session.id) is False
    assert await store.delete_for_user(user.id, session.id) is True
    assert await store.get(session.id) is None


@pytest.mark.asyncio
async def test_delete_all_except_one(store, user, db_session):
    keep = await store.create(user.id, generate_token_pair())
    await store.create(user.id, generate_token_pair())
    await store.create(user.id, generate_token_pair())
    await db_session.commit()

    assert await store.delete_all_for_user(user.id, except_session_id=keep.id) == 2
    remaining = await store.list_for_user(user.id)
    assert [s.id for s in remaining] == [keep.id]


@pytest.mark.asyncio
async def test_purge_expired(store, user, db_session):
    s1 = await store.create(user.id, generate_token_pair())
    await store.create(user.id, generate_token_pair())
    await db_session.commit()
    await _expire(db_session, s1.id)

    assert await store.purge_expired() == 1
    assert await store.count_live(user.id) == 1


# ═══════════════════════════════════════════════════════════
# Session cap
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_enforce_limit_noop_below_cap(store, user):
    await store.create(user.id, generate_token_pair())
    assert await store.enforce_limit(user.id) == []


@pytest.mark.asyncio
async def test_enforce_limit_evicts_oldest_in_one_batch(store, user, db_session):
    """Above the cap (e.g. after a config change), evict down to max - 1."""
    created = [await store.create(user.id, generate_token_pair()) for _ in range(5)]
    await db_session.commit()

    revoked = await store.enforce_limit(user.id)
    assert revoked == [s.id for s in created[:3]]
    assert await store.count_live(user.id) == 2


@pytest.mark.asyncio
async def test_trim_excess_keeps_new_session(store, user, db_session):
    created = [await store.create(user.id, generate_token_pair()) for _ in range(4)]
    newest = created[-1]

    trimmed = await store.trim_excess(user.id, keep_session_id=newest.id)
    assert trimmed == [created[0].id]
    remaining = [s.id for s in await store.list_for_user(user.id)]
    assert newest.id in remaining
    assert len(remaining) == 3
