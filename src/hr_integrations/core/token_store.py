# PUBLIC_INTERFACE
"""
Credential storage collaborator.

Holds installed integrations and their token records. Token values arrive
already encrypted (OAuthManager encrypts before saving); the store never sees
plaintext secrets.

- InMemoryIntegrationStore: thread-safe dicts, for tests and single-process runs.
- MongoIntegrationStore: motor-backed, one document per integration / token record.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from .db import upsert_by_id
from .models import IntegrationConfig, IntegrationState, TokenRecord


class IntegrationStore:
    """Async persistence interface for integrations and encrypted tokens."""

    async def get_integration(self, integration_id: str) -> Optional[IntegrationConfig]:
        raise NotImplementedError

    async def save_integration(self, config: IntegrationConfig) -> IntegrationConfig:
        raise NotImplementedError

    async def set_integration_status(
        self, integration_id: str, status: IntegrationState, last_error: Optional[str] = None
    ) -> bool:
        raise NotImplementedError

    async def get_token_record(self, integration_id: str) -> Optional[TokenRecord]:
        raise NotImplementedError

    async def save_token_record(self, record: TokenRecord) -> None:
        raise NotImplementedError

    async def delete_token_record(self, integration_id: str) -> bool:
        """Hard delete. Returns False when there was nothing to delete."""
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryIntegrationStore(IntegrationStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._integrations: Dict[str, IntegrationConfig] = {}
        self._tokens: Dict[str, TokenRecord] = {}

    async def get_integration(self, integration_id: str) -> Optional[IntegrationConfig]:
        with self._lock:
            config = self._integrations.get(integration_id)
            return config.model_copy(deep=True) if config else None

    async def save_integration(self, config: IntegrationConfig) -> IntegrationConfig:
        with self._lock:
            self._integrations[config.id] = config.model_copy(deep=True)
        return config

    async def set_integration_status(
        self, integration_id: str, status: IntegrationState, last_error: Optional[str] = None
    ) -> bool:
        with self._lock:
            config = self._integrations.get(integration_id)
            if config is None:
                return False
            metadata = dict(config.metadata)
            metadata["last_error"] = last_error
            self._integrations[integration_id] = config.model_copy(update={"status": status, "metadata": metadata})
            return True

    async def get_token_record(self, integration_id: str) -> Optional[TokenRecord]:
        with self._lock:
            record = self._tokens.get(integration_id)
            return record.model_copy(deep=True) if record else None

    async def save_token_record(self, record: TokenRecord) -> None:
        with self._lock:
            self._tokens[record.integration_id] = record.model_copy(deep=True)

    async def delete_token_record(self, integration_id: str) -> bool:
        with self._lock:
            return self._tokens.pop(integration_id, None) is not None


class MongoIntegrationStore(IntegrationStore):
    """Collections: ``integrations`` keyed by integration id, ``integration_tokens`` keyed the same way."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.integrations = db["integrations"]
        self.tokens = db["integration_tokens"]

    async def ensure_indexes(self) -> None:
        await self.integrations.create_index([("company_id", ASCENDING), ("provider_id", ASCENDING)])

    async def get_integration(self, integration_id: str) -> Optional[IntegrationConfig]:
        doc = await self.integrations.find_one({"_id": integration_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return IntegrationConfig.model_validate(doc)

    async def save_integration(self, config: IntegrationConfig) -> IntegrationConfig:
        await upsert_by_id(self.integrations, config.id, config.model_dump(mode="json"))
        return config

    async def set_integration_status(
        self, integration_id: str, status: IntegrationState, last_error: Optional[str] = None
    ) -> bool:
        result = await self.integrations.update_one(
            {"_id": integration_id},
            {"$set": {"status": status.value, "metadata.last_error": last_error}},
        )
        return result.matched_count > 0

    async def get_token_record(self, integration_id: str) -> Optional[TokenRecord]:
        doc = await self.tokens.find_one({"_id": integration_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return TokenRecord.model_validate(doc)

    async def save_token_record(self, record: TokenRecord) -> None:
        # datetimes stay native so Mongo stores them as dates
        await upsert_by_id(self.tokens, record.integration_id, record.model_dump())

    async def delete_token_record(self, integration_id: str) -> bool:
        result = await self.tokens.delete_one({"_id": integration_id})
        return result.deleted_count > 0
