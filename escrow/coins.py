"""
Coin Selection

Chooses the value record an escrow is funded from.

Two strategies, picked once at connection time:

- FirstFitSelector: local mode. The orchestrator sees the spendable
  records and picks the first native record large enough. First-fit, not
  best-fit, so the choice is reproducible.
- PlaceholderSelector: delegated mode. The signer's records are not
  visible; a placeholder record is manufactured and the signer's own
  balancing step does the real selection.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, List, Optional
import logging
import os

from .contracts import NATIVE_COLOR, ValueRecord
from .errors import InsufficientBalance

logger = logging.getLogger(__name__)

RecordSource = Callable[[], Awaitable[List[ValueRecord]]]


def first_fit(records: Iterable[ValueRecord], required: int) -> Optional[ValueRecord]:
    """First native record with value >= required, in the order given."""
    for record in records:
        if record.is_native and record.value >= required:
            return record
    return None


class CoinSelector(ABC):

    @abstractmethod
    async def select(self, required: int) -> ValueRecord:
        """
        Return the record to fund `required` from.

        Raises InsufficientBalance when nothing qualifies.
        """
        pass

    @staticmethod
    def _check_required(required: int):
        if required <= 0:
            raise ValueError(f"Escrow amount must be positive, got {required}")


class FirstFitSelector(CoinSelector):
    """Selects from records the local custody service reports."""

    def __init__(self, records_source: RecordSource):
        self._records_source = records_source

    async def select(self, required: int) -> ValueRecord:
        self._check_required(required)
        records = await self._records_source()
        selected = first_fit(records, required)
        if selected is None:
            logger.info(
                "No native record covers %d (%d records known)", required, len(records)
            )
            raise InsufficientBalance(required)
        logger.debug("Selected record with value %d for %d", selected.value, required)
        return selected


class PlaceholderSelector(CoinSelector):
    """Fresh random nonce, native color, requested value."""

    def __init__(self, nonce_factory: Callable[[int], bytes] = os.urandom):
        self._nonce_factory = nonce_factory

    async def select(self, required: int) -> ValueRecord:
        self._check_required(required)
        return ValueRecord(
            nonce=self._nonce_factory(32),
            color=NATIVE_COLOR,
            value=required,
        )
