# storage/registration_store.py
# ============================================================================
# MASTERCLASS REGISTRATION BACKEND — REGISTRATION STORE
# ============================================================================
# Repository interface for registrations plus the in-memory implementation.
# Nothing survives a restart. Callers only ever see copies of records; the
# backing dict is never handed out.
# ============================================================================

import asyncio
import secrets
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog

from errors import NotFoundError
from schemas.registration import ConfirmationSource, RegistrantInfo, Registration

logger = structlog.get_logger(component="registration_store")

Mutator = Callable[[Registration], Registration]


class IRegistrationStore(ABC):
    """Registration repository interface"""

    @abstractmethod
    async def create(self, info: RegistrantInfo) -> Registration:
        pass

    @abstractmethod
    async def get(self, reference_id: str) -> Optional[Registration]:
        pass

    @abstractmethod
    async def update(self, reference_id: str, mutator: Mutator) -> Optional[Registration]:
        pass

    @abstractmethod
    async def find_by_order_id(self, order_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def find_by_transaction_id(self, transaction_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def mark_confirmed(
        self,
        reference_id: str,
        transaction_id: str,
        via: ConfirmationSource,
    ) -> bool:
        """Compare-and-set ``payment_confirmed`` from False to True."""
        pass

    @abstractmethod
    async def is_confirmed(self, reference_id: str) -> bool:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def confirmed_count(self) -> int:
        pass


class InMemoryRegistrationStore(IRegistrationStore):
    """Lock-guarded in-memory registration store"""

    def __init__(self, token_bytes: int = 8):
        self._records: dict[str, Registration] = {}
        self._confirmed: set[str] = set()
        self._token_bytes = token_bytes
        self._lock = asyncio.Lock()

    def _new_reference_id(self) -> str:
        while True:
            candidate = secrets.token_hex(self._token_bytes)
            if candidate not in self._records:
                return candidate

    async def create(self, info: RegistrantInfo) -> Registration:
        async with self._lock:
            record = Registration(
                reference_id=self._new_reference_id(),
                full_name=info.full_name,
                email=info.email,
                phone=info.phone,
            )
            self._records[record.reference_id] = record
            logger.info("registration_created", reference_id=record.reference_id)
            return record.model_copy(deep=True)

    async def get(self, reference_id: str) -> Optional[Registration]:
        async with self._lock:
            record = self._records.get(reference_id)
            return record.model_copy(deep=True) if record else None

    async def update(self, reference_id: str, mutator: Mutator) -> Optional[Registration]:
        async with self._lock:
            current = self._records.get(reference_id)
            if current is None:
                return None
            updated = mutator(current.model_copy(deep=True))
            if updated.reference_id != reference_id:
                raise ValueError("mutator must not change the reference id")
            # The confirmed flag only moves through mark_confirmed
            if updated.payment_confirmed != current.payment_confirmed:
                raise ValueError("payment confirmation must go through mark_confirmed")
            self._records[reference_id] = updated
            return updated.model_copy(deep=True)

    async def find_by_order_id(self, order_id: str) -> Optional[str]:
        async with self._lock:
            for reference_id, record in self._records.items():
                if order_id in record.order_ids:
                    return reference_id
            return None

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[str]:
        async with self._lock:
            for reference_id, record in self._records.items():
                if record.transaction_id == transaction_id:
                    return reference_id
            return None

    async def mark_confirmed(
        self,
        reference_id: str,
        transaction_id: str,
        via: ConfirmationSource,
    ) -> bool:
        if not transaction_id:
            raise ValueError("transaction_id is required to confirm a payment")
        async with self._lock:
            current = self._records.get(reference_id)
            if current is None:
                raise NotFoundError(f"Registration not found: {reference_id}")
            if current.payment_confirmed:
                return False
            self._records[reference_id] = current.as_confirmed(transaction_id, via)
            self._confirmed.add(reference_id)
            logger.info("registration_confirmed",
                        reference_id=reference_id,
                        transaction_id=transaction_id,
                        via=via.value)
            return True

    async def is_confirmed(self, reference_id: str) -> bool:
        async with self._lock:
            return reference_id in self._confirmed

    async def count(self) -> int:
        async with self._lock:
            return len(self._records)

    async def confirmed_count(self) -> int:
        async with self._lock:
            return len(self._confirmed)
