"""Cancellation handle for in-flight network requests."""

import asyncio


class CancelToken:
    """Marks a request as superseded.

    The flag is checked when the request resolves, so a late response is
    ignored even if the underlying transport could not be interrupted. When a
    task is bound, cancelling the token also cancels that task.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._task: asyncio.Future | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: asyncio.Future) -> None:
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
