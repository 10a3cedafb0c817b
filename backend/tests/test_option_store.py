"""Tests for the SQL-backed option store."""
import pytest

from ytfield.db.database import close_db, create_engine, create_session_maker, init_db, session_scope
from ytfield.models.option import Option
from ytfield.services.option_store import SqlOptionStore
from ytfield.services.token_store import TokenStore


@pytest.mark.asyncio
async def test_sql_option_store_round_trip(tmp_path, settings, token_factory):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'options.db'}")
    await init_db(engine)
    session_maker = create_session_maker(engine)
    store = SqlOptionStore(session_maker)

    assert await store.get("missing") is None

    await store.set("ytfield_activated", 1700000000)
    await store.set("ytfield_activated", 1700000001)
    assert await store.get("ytfield_activated") == 1700000001

    token_store = TokenStore(store, settings.token_option_key, retry_backoff=0)
    record = token_factory()
    assert await token_store.save(record) is True
    assert (await token_store.get()).access_token == record["access_token"]

    assert await store.delete(settings.token_option_key) is True
    assert await store.delete(settings.token_option_key) is False
    assert await token_store.get() is None

    await close_db(engine)


@pytest.mark.asyncio
async def test_sql_option_store_returns_non_json_text_as_is(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'options.db'}")
    await init_db(engine)
    session_maker = create_session_maker(engine)
    async with session_scope(session_maker) as session:
        session.add(Option(key="legacy", value="plain text"))

    assert await SqlOptionStore(session_maker).get("legacy") == "plain text"

    await close_db(engine)
