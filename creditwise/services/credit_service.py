# creditwise/services/credit_service.py
"""
Usage metering.

Each authenticated user has an integer balance under ``credits:{user_id}``.
The record is created lazily with the starting grant, debited one unit per
paid interaction by a single atomic script, and only grows through explicit
grants. Storage failures fail closed: a debit that cannot be confirmed is
treated as refused.
"""

import logging
from typing import Optional

from creditwise.core.config import settings
from creditwise.core.exceptions import StorageError, ValidationError
from creditwise.services.redis_service import RedisService

logger = logging.getLogger(__name__)

CREDIT_KEY_PREFIX = "credits"


class CreditService:
    """Per-user credit balance backed by Redis"""

    def __init__(self, redis_service: RedisService, starting_credits: Optional[int] = None):
        self.redis = redis_service
        self.starting_credits = settings.STARTING_CREDITS if starting_credits is None else starting_credits

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{CREDIT_KEY_PREFIX}:{user_id}"

    async def _ensure_record(self, user_id: str) -> None:
        created = await self.redis.set_if_absent(self._key(user_id), self.starting_credits)
        if created:
            logger.info(f"Initialized credit balance for {user_id} with {self.starting_credits}")

    async def get_balance(self, user_id: str) -> int:
        """
        Current balance, creating the record with the starting grant if absent.

        Raises:
            StorageError: If the balance cannot be read
        """
        await self._ensure_record(user_id)
        value = await self.redis.get(self._key(user_id), raise_errors=True)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise StorageError(
                f"Corrupt credit balance for {user_id}",
                service_name="CreditService",
                operation="get_balance",
                details={"value": str(value)}
            )

    async def consume(self, user_id: str) -> bool:
        """
        Debit exactly one credit.

        Returns:
            True if a credit was consumed, False if the balance was
            exhausted or the debit could not be confirmed
        """
        try:
            remaining = await self.redis.decrement_if_positive(self._key(user_id), self.starting_credits)
        except StorageError as e:
            logger.error(f"Credit debit failed for {user_id}, refusing: {e}")
            return False

        if remaining < 0:
            logger.info(f"User {user_id} has no credits left")
            return False

        logger.debug(f"Consumed 1 credit for {user_id}, {remaining} left")
        return True

    async def grant(self, user_id: str, amount: int) -> int:
        """
        Add credits (purchase flow). Returns the new balance.

        Raises:
            ValidationError: If amount is not positive
            StorageError: If the balance cannot be updated
        """
        if amount <= 0:
            raise ValidationError("Grant amount must be positive", field="amount", value=amount)

        await self._ensure_record(user_id)
        new_balance = await self.redis.incr(self._key(user_id), amount)
        if new_balance is None:
            raise StorageError(
                f"Could not grant credits to {user_id}",
                service_name="CreditService",
                operation="grant"
            )

        logger.info(f"Granted {amount} credits to {user_id}, balance {new_balance}")
        return new_balance
