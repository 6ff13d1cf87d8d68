from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from session_risk_engine.models import ConfirmationToken
from session_risk_engine.persistence import InMemoryConfirmationTokenStore, MongoConfirmationTokenStore


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_token(value="tok-1", principal_id="user-1", **overrides):
    fields = dict(
        value=value,
        principal_id=principal_id,
        reason="attack pattern",
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=30),
        ip="1.1.1.1",
        user_agent="ua",
    )
    fields.update(overrides)
    return ConfirmationToken(**fields)


def build_mongo_store():
    client = MagicMock()
    store = MongoConfirmationTokenStore(uri="mongodb://unused", client=client)
    return store, store.tokens


def test_in_memory_store_returns_copies():
    store = InMemoryConfirmationTokenStore()
    token = make_token()
    store.save(token)
    token.used = True
    loaded = store.find_by_value("tok-1")
    assert loaded.used is False
    loaded.invalidated = True
    assert store.find_by_value("tok-1").invalidated is False


def test_in_memory_invalidate_skips_used_tokens():
    store = InMemoryConfirmationTokenStore()
    store.save(make_token("a"))
    store.save(make_token("b", used=True))
    store.save(make_token("c", principal_id="user-2"))
    assert store.invalidate_for_principal("user-1") == 1
    assert store.find_pending("user-1", NOW) == []
    assert [t.value for t in store.find_pending("user-2", NOW)] == ["c"]


def test_mongo_store_creates_indexes():
    store, tokens = build_mongo_store()
    tokens.create_index.assert_any_call("value", unique=True)


def test_mongo_save_upserts_by_value():
    store, tokens = build_mongo_store()
    token = make_token()
    store.save(token)
    tokens.replace_one.assert_called_once()
    query, document = tokens.replace_one.call_args.args
    assert query == {"value": "tok-1"}
    assert document["principal_id"] == "user-1"
    assert document["expires_at"] == token.expires_at
    assert tokens.replace_one.call_args.kwargs == {"upsert": True}


def test_mongo_find_by_value_restores_utc():
    store, tokens = build_mongo_store()
    document = store.serialize_token(make_token())
    document["_id"] = "object-id"
    document["issued_at"] = NOW.replace(tzinfo=None)
    tokens.find_one.return_value = document

    token = store.find_by_value("tok-1")
    assert token.issued_at == NOW
    assert token.issued_at.tzinfo is not None

    tokens.find_one.return_value = None
    assert store.find_by_value("missing") is None


def test_mongo_invalidate_and_sweep_report_counts():
    store, tokens = build_mongo_store()
    tokens.update_many.return_value.modified_count = 2
    tokens.delete_many.return_value.deleted_count = 5

    assert store.invalidate_for_principal("user-1") == 2
    filter_, update = tokens.update_many.call_args.args
    assert filter_ == {"principal_id": "user-1", "used": False, "invalidated": False}
    assert update == {"$set": {"invalidated": True}}

    cutoff = NOW - timedelta(days=7)
    assert store.delete_expired_before(cutoff) == 5
    tokens.delete_many.assert_called_once_with({"expires_at": {"$lt": cutoff}})


def test_mongo_find_pending_filters_live_tokens():
    store, tokens = build_mongo_store()
    tokens.find.return_value = [store.serialize_token(make_token())]
    pending = store.find_pending("user-1", NOW)
    assert [t.value for t in pending] == ["tok-1"]
    query = tokens.find.call_args.args[0]
    assert query["expires_at"] == {"$gte": NOW}


def test_in_memory_mark_confirmed_only_once():
    store = InMemoryConfirmationTokenStore()
    store.save(make_token())
    confirmed = store.mark_confirmed_if_pending("tok-1", NOW, "82.64.1.10", "Firefox")
    assert confirmed.used is True
    assert confirmed.confirming_ip == "82.64.1.10"
    assert store.mark_confirmed_if_pending("tok-1", NOW, "82.64.1.10", "Firefox") is None
    assert store.find_by_value("tok-1").confirmed_at == NOW


def test_in_memory_mark_confirmed_rejects_dead_tokens():
    store = InMemoryConfirmationTokenStore()
    store.save(make_token("old", invalidated=True))
    store.save(make_token("late"))
    assert store.mark_confirmed_if_pending("old", NOW, None, None) is None
    assert store.mark_confirmed_if_pending("late", NOW + timedelta(hours=1), None, None) is None
    assert store.mark_confirmed_if_pending("missing", NOW, None, None) is None


def test_mongo_store_enforces_one_live_token_per_principal():
    store, tokens = build_mongo_store()
    tokens.create_index.assert_any_call(
        "principal_id",
        name="one_live_token_per_principal",
        unique=True,
        partialFilterExpression={"used": False, "invalidated": False},
    )


def test_mongo_mark_confirmed_is_a_single_conditional_update():
    store, tokens = build_mongo_store()
    confirmed = make_token(used=True, confirmed_at=NOW, confirming_ip="82.64.1.10")
    tokens.find_one_and_update.return_value = store.serialize_token(confirmed)

    token = store.mark_confirmed_if_pending("tok-1", NOW, "82.64.1.10", "Firefox")

    assert token.used is True
    query, update = tokens.find_one_and_update.call_args.args
    assert query == {"value": "tok-1", "used": False, "invalidated": False, "expires_at": {"$gte": NOW}}
    assert update["$set"]["used"] is True
    assert update["$set"]["confirming_user_agent"] == "Firefox"

    tokens.find_one_and_update.return_value = None
    assert store.mark_confirmed_if_pending("tok-1", NOW, "82.64.1.10", "Firefox") is None
