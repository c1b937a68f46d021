from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from orderwatch.services.callback_slot import CallbackSlot

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class DecryptionPoller:
    """Polls ``read_status(handle)`` until the ciphertext reports decrypted.

    The first read happens as soon as the loop starts, then one read per
    interval. A ``True`` result ends the loop after the callback has seen it.
    Read errors are logged and the loop carries on.
    """

    def __init__(
        self,
        read_status: Callable[[int], Awaitable[bool]],
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_result: Callable[[bool], object] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._read_status = read_status
        self.interval_seconds = interval_seconds
        self.on_result: CallbackSlot[[bool]] = CallbackSlot(on_result)
        self._sleep = sleep_fn
        self._task: asyncio.Task[None] | None = None
        self._handle: int | None = None
        self.poll_count = 0
        self.last_error: BaseException | None = None
        self.decrypted = False

    @property
    def handle(self) -> int | None:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, handle: int) -> bool:
        if self.is_running and self._handle == handle:
            return False
        self.stop()
        self._handle = handle
        self.poll_count = 0
        self.last_error = None
        self.decrypted = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(handle), name=f"decrypt-poll:{handle}"
        )
        logger.info("Started decryption polling", extra={"extra": {"handle": handle}})
        return True

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()
        logger.info("Stopped decryption polling", extra={"extra": {"handle": self._handle}})

    async def wait(self) -> None:
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, handle: int) -> None:
        me = asyncio.current_task()
        while self._task is me:
            self.poll_count += 1
            try:
                decrypted = bool(await self._read_status(handle))
            except Exception as exc:
                self.last_error = exc
                logger.warning(
                    "Decryption status poll failed",
                    exc_info=True,
                    extra={"extra": {"handle": handle, "poll": self.poll_count}},
                )
            else:
                if self._task is not me:
                    return
                self.decrypted = decrypted
                if decrypted:
                    self._task = None
                    logger.info(
                        "Decryption complete",
                        extra={"extra": {"handle": handle, "polls": self.poll_count}},
                    )
                self._deliver(handle, decrypted)
                if decrypted or self._task is not me:
                    return
            await self._sleep(self.interval_seconds)

    def _deliver(self, handle: int, decrypted: bool) -> None:
        try:
            self.on_result(decrypted)
        except Exception:
            logger.exception(
                "Decryption result handler failed", extra={"extra": {"handle": handle}}
            )
