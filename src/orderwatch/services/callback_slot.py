from __future__ import annotations

from collections.abc import Callable
from typing import Generic, ParamSpec

P = ParamSpec("P")


class CallbackSlot(Generic[P]):
    """Single mutable slot holding the most recently registered callback.

    Long-lived watchers and pollers capture the slot, not the callback, so a
    callback swapped in after they started is the one that gets invoked.
    """

    def __init__(self, callback: Callable[P, object] | None = None) -> None:
        self._callback = callback

    def set(self, callback: Callable[P, object] | None) -> None:
        self._callback = callback

    @property
    def is_set(self) -> bool:
        return self._callback is not None

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> None:
        callback = self._callback
        if callback is not None:
            callback(*args, **kwargs)
