from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from orderwatch.adapters.chain import ReceiptSource
from orderwatch.domain.models import TransactionReceipt
from orderwatch.services.callback_slot import CallbackSlot

logger = logging.getLogger(__name__)


class ReceiptWatcher:
    """Waits for one transaction receipt at a time on the running event loop.

    ``watch`` switches the watched identifier: interest in the previous one is
    cancelled and its result, should it still arrive, is dropped. ``None``
    leaves the watcher idle.
    """

    def __init__(
        self,
        source: ReceiptSource,
        on_receipt: Callable[[TransactionReceipt], object] | None = None,
    ) -> None:
        self._source = source
        self.on_receipt: CallbackSlot[[TransactionReceipt]] = CallbackSlot(on_receipt)
        self._tx_hash: str | None = None
        self._receipt: TransactionReceipt | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def tx_hash(self) -> str | None:
        return self._tx_hash

    @property
    def receipt(self) -> TransactionReceipt | None:
        return self._receipt

    @property
    def is_monitoring(self) -> bool:
        return self._tx_hash is not None and self._receipt is None

    def watch(self, tx_hash: str | None) -> None:
        if tx_hash == self._tx_hash:
            return
        self.cancel()
        self._tx_hash = tx_hash
        self._receipt = None
        if tx_hash is None:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(tx_hash), name=f"receipt-watch:{tx_hash}"
        )

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait(self) -> TransactionReceipt | None:
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return self._receipt

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        self._tx_hash = None
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, tx_hash: str) -> None:
        try:
            receipt = await self._source.wait_for_receipt(tx_hash)
        except Exception:
            logger.warning(
                "Receipt watch ended without a receipt",
                exc_info=True,
                extra={"extra": {"tx_hash": tx_hash}},
            )
            return
        if self._tx_hash != tx_hash:
            return
        self._receipt = receipt
        try:
            self.on_receipt(receipt)
        except Exception:
            logger.exception("Receipt handler failed", extra={"extra": {"tx_hash": tx_hash}})
