"""
Redis Repository implementations.

Provides type-safe, domain-specific access to Redis state storage.
Each repository encapsulates Redis keys and operations for its domain.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisClientConnectionError

from pos_terminal.core.exceptions import RedisConnectionError, RepositoryError
from pos_terminal.core.value_objects import ChargeOutcome, ChargeRequest
from pos_terminal.loggers import logger


# =============================================================================
# Base Repository
# =============================================================================


class RedisStateRepository:
    """
    Base repository for Redis state operations.

    Provides common Redis operations with error handling.
    """

    def __init__(self, redis: Redis) -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
        """
        self._redis = redis

    async def get(self, key: str) -> Optional[str]:
        """Get a string value by key."""
        try:
            return await self._redis.get(key)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def set(self, key: str, value: Any) -> None:
        """Set a key-value pair."""
        try:
            await self._redis.set(key, value)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def delete(self, key: str) -> None:
        """Delete a key."""
        try:
            await self._redis.delete(key)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def push_capped(self, key: str, value: str, limit: int) -> None:
        """Prepend to a list, keeping at most ``limit`` entries."""
        try:
            await self._redis.lpush(key, value)
            await self._redis.ltrim(key, 0, limit - 1)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def get_list(self, key: str, count: int) -> list[str]:
        """Get the first ``count`` entries of a list."""
        try:
            return await self._redis.lrange(key, 0, count - 1)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def increment_field(self, key: str, field_name: str, amount: int = 1) -> int:
        """Increment a hash field by the specified amount."""
        try:
            return await self._redis.hincrby(key, field_name, amount)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")

    async def get_hash(self, key: str) -> dict[str, str]:
        """Get all fields of a hash."""
        try:
            return await self._redis.hgetall(key)
        except RedisClientConnectionError as e:
            raise RedisConnectionError(f"Redis connection error: {e}")


# =============================================================================
# Transaction Repository
# =============================================================================


@dataclass
class TransactionRecord:
    """Terminal outcome of one charge, as stored in Redis."""

    intent_id: Optional[str]
    amount_cents: int
    category: Optional[str]
    art_number: Optional[int]
    outcome: str
    message: str
    recorded_at: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        intent_id: Optional[str],
        request: ChargeRequest,
        outcome: ChargeOutcome,
    ) -> "TransactionRecord":
        """Create a record from a request and its outcome."""
        return cls(
            intent_id=intent_id,
            amount_cents=request.amount_cents,
            category=request.category.value if request.category else None,
            art_number=request.art_number,
            outcome=outcome.kind.value,
            message=outcome.message,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "TransactionRecord":
        """
        Parse a stored record.

        Raises:
            RepositoryError: If the stored value is not a valid record.
        """
        try:
            return cls(**json.loads(raw))
        except (json.JSONDecodeError, TypeError) as e:
            raise RepositoryError(f"Corrupt transaction record: {e}")


class TransactionRepository(RedisStateRepository):
    """
    Repository for charge bookkeeping.

    Keys:
    - pos:pending_intent: Intent awaiting verification after a reader hand-off failure
    - pos:transactions: Recent terminal outcomes (newest first)
    - pos:outcome_counts: Count per outcome kind
    - pos:approved_totals: Approved cents per category
    """

    KEY_PENDING_INTENT = "pos:pending_intent"
    KEY_TRANSACTIONS = "pos:transactions"
    KEY_OUTCOME_COUNTS = "pos:outcome_counts"
    KEY_APPROVED_TOTALS = "pos:approved_totals"

    HISTORY_LIMIT = 500

    async def set_pending_intent(self, intent_id: str) -> None:
        """Persist the intent awaiting verification."""
        await self.set(self.KEY_PENDING_INTENT, intent_id)

    async def get_pending_intent(self) -> Optional[str]:
        """Get the intent awaiting verification."""
        return await self.get(self.KEY_PENDING_INTENT)

    async def clear_pending_intent(self) -> None:
        """Forget the intent awaiting verification."""
        await self.delete(self.KEY_PENDING_INTENT)

    async def record_outcome(self, record: TransactionRecord) -> None:
        """Append a terminal outcome and update the running totals."""
        await self.push_capped(self.KEY_TRANSACTIONS, record.to_json(), self.HISTORY_LIMIT)
        await self.increment_field(self.KEY_OUTCOME_COUNTS, record.outcome)
        if record.outcome == "approved" and record.category:
            await self.increment_field(
                self.KEY_APPROVED_TOTALS, record.category, record.amount_cents
            )
        logger.debug(f"Recorded {record.outcome} for intent {record.intent_id}")

    async def get_recent(self, count: int = 20) -> list[TransactionRecord]:
        """Get the most recent terminal outcomes, newest first."""
        raw = await self.get_list(self.KEY_TRANSACTIONS, count)
        return [TransactionRecord.from_json(item) for item in raw]

    async def get_approved_totals(self) -> dict[str, int]:
        """Get approved cents per category."""
        totals = await self.get_hash(self.KEY_APPROVED_TOTALS)
        return {category: int(value) for category, value in totals.items()}

    async def get_outcome_counts(self) -> dict[str, int]:
        """Get the number of charges per outcome kind."""
        counts = await self.get_hash(self.KEY_OUTCOME_COUNTS)
        return {kind: int(value) for kind, value in counts.items()}
