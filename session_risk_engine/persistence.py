from __future__ import annotations

import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol

from pymongo import ASCENDING, MongoClient, ReturnDocument

from .models import ConfirmationToken


class ConfirmationTokenStore(Protocol):
    def save(self, token: ConfirmationToken) -> None: ...

    def find_by_value(self, value: str) -> Optional[ConfirmationToken]: ...

    def invalidate_for_principal(self, principal_id: str) -> int: ...

    def mark_confirmed_if_pending(
        self, value: str, now: datetime, ip: Optional[str], user_agent: Optional[str]
    ) -> Optional[ConfirmationToken]: ...

    def find_pending(self, principal_id: str, now: datetime) -> List[ConfirmationToken]: ...

    def delete_expired_before(self, cutoff: datetime) -> int: ...


class InMemoryConfirmationTokenStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, ConfirmationToken] = {}

    def save(self, token: ConfirmationToken) -> None:
        with self._lock:
            self._tokens[token.value] = token.copy()

    def find_by_value(self, value: str) -> Optional[ConfirmationToken]:
        token = self._tokens.get(value)
        return token.copy() if token else None

    def invalidate_for_principal(self, principal_id: str) -> int:
        count = 0
        with self._lock:
            for token in self._tokens.values():
                if token.principal_id == principal_id and not token.used and not token.invalidated:
                    token.invalidated = True
                    count += 1
        return count

    def mark_confirmed_if_pending(
        self, value: str, now: datetime, ip: Optional[str], user_agent: Optional[str]
    ) -> Optional[ConfirmationToken]:
        with self._lock:
            token = self._tokens.get(value)
            if token is None or token.used or token.invalidated or token.is_expired(now):
                return None
            token.mark_confirmed(now, ip, user_agent)
            return token.copy()

    def find_pending(self, principal_id: str, now: datetime) -> List[ConfirmationToken]:
        return [
            token.copy()
            for token in list(self._tokens.values())
            if token.principal_id == principal_id
            and not token.used
            and not token.invalidated
            and not token.is_expired(now)
        ]

    def delete_expired_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [value for value, token in self._tokens.items() if token.expires_at < cutoff]
            for value in stale:
                del self._tokens[value]
        return len(stale)

    def __len__(self) -> int:
        return len(self._tokens)


class MongoConfirmationTokenStore:
    """MongoDB-backed store for confirmation tokens."""

    def __init__(self, uri: str, database: str = "session_risk", client: MongoClient | None = None) -> None:
        self.client = client or MongoClient(uri, tz_aware=True)
        self.db = self.client[database]
        self.tokens = self.db["confirmation_tokens"]
        self.tokens.create_index("value", unique=True)
        self.tokens.create_index([("principal_id", ASCENDING), ("used", ASCENDING)])
        # at most one live token per principal, even across processes
        self.tokens.create_index(
            "principal_id",
            name="one_live_token_per_principal",
            unique=True,
            partialFilterExpression={"used": False, "invalidated": False},
        )

    def save(self, token: ConfirmationToken) -> None:
        self.tokens.replace_one({"value": token.value}, self.serialize_token(token), upsert=True)

    def find_by_value(self, value: str) -> Optional[ConfirmationToken]:
        document = self.tokens.find_one({"value": value})
        if document is None:
            return None
        return self.deserialize_token(document)

    def invalidate_for_principal(self, principal_id: str) -> int:
        result = self.tokens.update_many(
            {"principal_id": principal_id, "used": False, "invalidated": False},
            {"$set": {"invalidated": True}},
        )
        return result.modified_count

    def mark_confirmed_if_pending(
        self, value: str, now: datetime, ip: Optional[str], user_agent: Optional[str]
    ) -> Optional[ConfirmationToken]:
        document = self.tokens.find_one_and_update(
            {"value": value, "used": False, "invalidated": False, "expires_at": {"$gte": now}},
            {"$set": {"used": True, "confirmed_at": now, "confirming_ip": ip, "confirming_user_agent": user_agent}},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            return None
        return self.deserialize_token(document)

    def find_pending(self, principal_id: str, now: datetime) -> List[ConfirmationToken]:
        cursor = self.tokens.find(
            {"principal_id": principal_id, "used": False, "invalidated": False, "expires_at": {"$gte": now}}
        )
        return [self.deserialize_token(document) for document in cursor]

    def delete_expired_before(self, cutoff: datetime) -> int:
        return self.tokens.delete_many({"expires_at": {"$lt": cutoff}}).deleted_count

    def serialize_token(self, token: ConfirmationToken) -> Dict[str, Any]:
        return asdict(token)

    def deserialize_token(self, document: Mapping[str, Any]) -> ConfirmationToken:
        data = {key: value for key, value in document.items() if key != "_id"}
        for key in ("issued_at", "expires_at", "confirmed_at"):
            value = data.get(key)
            if isinstance(value, datetime) and value.tzinfo is None:
                data[key] = value.replace(tzinfo=timezone.utc)
        return ConfirmationToken(**data)
