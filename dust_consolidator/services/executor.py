"""Custody and execution boundary.

The orchestrator never talks to a chain directly; it drives a
``ChainExecutor`` that owns the consolidator's token custody on the
destination chain. ``InMemoryExecutor`` keeps balances in-process and backs
development and tests.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from eth_utils import to_checksum_address

from dust_consolidator.core.constants import BPS_DENOMINATOR
from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.quote import ExecutionPayload


logger = get_logger(__name__)


class ExecutorError(Exception):
    """Raised by an executor when a custody operation cannot be performed."""


@dataclass(frozen=True)
class Transfer:
    """One leg of an atomic payout batch."""

    recipient: str
    amount: int


@runtime_checkable
class ChainExecutor(Protocol):
    """Custody operations the orchestrator relies on."""

    async def balance_of(self, asset: str) -> int:
        """Custody balance of ``asset``."""
        ...

    async def acknowledge_delivery(self, asset: str, amount: int) -> None:
        """Observe tokens delivered by the bridge into custody."""
        ...

    async def execute(self, payload: ExecutionPayload, snapshot_id: int | None = None) -> int:
        """Dispatch swap calldata; returns the buy-asset amount received.

        Raises on revert. With ``snapshot_id`` the balance changes are
        journaled so ``revert`` can undo exactly this swap.
        """
        ...

    async def transfer_batch(self, asset: str, transfers: list[Transfer]) -> None:
        """Pay out every transfer or none of them."""
        ...

    async def transfer_assets(self, recipient: str, amounts: dict[str, int]) -> None:
        """Pay ``recipient`` every asset amount or none of them."""
        ...

    async def snapshot(self, assets: Iterable[str]) -> int:
        """Open a journal scoped to ``assets``; returns a snapshot id."""
        ...

    async def revert(self, snapshot_id: int) -> None:
        """Undo the journaled changes of a snapshot; other balances are untouched."""
        ...

    async def commit(self, snapshot_id: int) -> None:
        """Keep the journaled changes and close the snapshot."""
        ...


class InMemoryExecutor:
    """In-process custody with deterministic swap fills.

    A swap debits ``sell_amount`` of the sell asset and credits
    ``expected_output * (10000 - slippage_bps) // 10000`` of the buy asset.
    Snapshots journal only the deltas of swaps executed under them, so a
    revert leaves every other job's receipts and swaps in place.

    Attributes:
        slippage_bps: Fill shortfall applied to every swap.
        fail_swaps: When True, ``execute`` raises as if the call reverted.
        payouts: recipient -> asset -> amount paid out.
    """

    def __init__(
        self,
        balances: dict[str, int] | None = None,
        slippage_bps: int = 0,
    ) -> None:
        self._balances: dict[str, int] = defaultdict(int)
        for asset, amount in (balances or {}).items():
            self._balances[to_checksum_address(asset)] = amount
        self.slippage_bps = slippage_bps
        self.fail_swaps = False
        self.payouts: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.executed: list[ExecutionPayload] = []
        self._snapshots: dict[int, dict[str, int]] = {}
        self._snapshot_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def credit(self, asset: str, amount: int) -> None:
        """Add tokens to custody directly."""
        self._balances[to_checksum_address(asset)] += amount

    def paid_to(self, recipient: str, asset: str) -> int:
        """Total of ``asset`` paid out to ``recipient``."""
        return self.payouts[to_checksum_address(recipient)][to_checksum_address(asset)]

    async def balance_of(self, asset: str) -> int:
        return self._balances[to_checksum_address(asset)]

    async def acknowledge_delivery(self, asset: str, amount: int) -> None:
        self.credit(asset, amount)

    async def execute(self, payload: ExecutionPayload, snapshot_id: int | None = None) -> int:
        async with self._lock:
            if self.fail_swaps:
                raise ExecutorError(f"swap via {payload.source} reverted")

            sell_asset = to_checksum_address(payload.sell_asset)
            buy_asset = to_checksum_address(payload.buy_asset)
            journal = self._journal(snapshot_id, (sell_asset, buy_asset)) if snapshot_id is not None else None
            if self._balances[sell_asset] < payload.sell_amount:
                raise ExecutorError(
                    f"insufficient {sell_asset} in custody: "
                    f"{self._balances[sell_asset]} < {payload.sell_amount}"
                )

            fill = payload.expected_output * (BPS_DENOMINATOR - self.slippage_bps) // BPS_DENOMINATOR
            self._balances[sell_asset] -= payload.sell_amount
            self._balances[buy_asset] += fill
            if journal is not None:
                journal[sell_asset] -= payload.sell_amount
                journal[buy_asset] += fill
            self.executed.append(payload)
            logger.debug("Swap executed", source=payload.source, fill=fill)
            return fill

    async def transfer_batch(self, asset: str, transfers: list[Transfer]) -> None:
        asset = to_checksum_address(asset)
        async with self._lock:
            total = sum(t.amount for t in transfers)
            if total > self._balances[asset]:
                raise ExecutorError(
                    f"insufficient {asset} in custody: {self._balances[asset]} < {total}"
                )
            self._balances[asset] -= total
            for t in transfers:
                self.payouts[to_checksum_address(t.recipient)][asset] += t.amount

    async def transfer_assets(self, recipient: str, amounts: dict[str, int]) -> None:
        recipient = to_checksum_address(recipient)
        amounts = {to_checksum_address(a): v for a, v in amounts.items() if v > 0}
        async with self._lock:
            for asset, amount in amounts.items():
                if amount > self._balances[asset]:
                    raise ExecutorError(
                        f"insufficient {asset} in custody: {self._balances[asset]} < {amount}"
                    )
            for asset, amount in amounts.items():
                self._balances[asset] -= amount
                self.payouts[recipient][asset] += amount

    async def snapshot(self, assets: Iterable[str]) -> int:
        async with self._lock:
            snapshot_id = next(self._snapshot_ids)
            self._snapshots[snapshot_id] = {to_checksum_address(a): 0 for a in assets}
            return snapshot_id

    async def revert(self, snapshot_id: int) -> None:
        async with self._lock:
            journal = self._journal(snapshot_id, ())
            for asset, delta in journal.items():
                if self._balances[asset] < delta:
                    raise ExecutorError(
                        f"cannot revert snapshot {snapshot_id}: {asset} already moved out of custody"
                    )
            del self._snapshots[snapshot_id]
            for asset, delta in journal.items():
                self._balances[asset] -= delta
            logger.debug("Snapshot reverted", snapshot_id=snapshot_id, assets=list(journal))

    async def commit(self, snapshot_id: int) -> None:
        async with self._lock:
            self._pop_journal(snapshot_id)

    def _journal(self, snapshot_id: int, assets: Iterable[str]) -> dict[str, int]:
        journal = self._snapshots.get(snapshot_id)
        if journal is None:
            raise ExecutorError(f"unknown snapshot {snapshot_id}")
        outside = [a for a in assets if a not in journal]
        if outside:
            raise ExecutorError(f"snapshot {snapshot_id} does not cover {', '.join(outside)}")
        return journal

    def _pop_journal(self, snapshot_id: int) -> dict[str, int]:
        try:
            return self._snapshots.pop(snapshot_id)
        except KeyError:
            raise ExecutorError(f"unknown snapshot {snapshot_id}") from None
