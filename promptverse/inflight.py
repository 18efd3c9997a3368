"""Coordination helpers for interleaved async work.

``RequestDeduplicator`` collapses concurrent identical requests into one
task; ``PromptApiClient`` uses it for every read.

``RequestTokens`` implements the latest-request-wins guard: a response is
applied only if no newer request was issued for the same context in the
meantime. The server itself never applies responses to a view, so this is a
public helper for host UIs (an ``ElementHost`` panel that reloads comments or
results for a prompt while the user keeps switching prompts):

    token = tokens.issue(panel_id)
    comments = await client_call()
    tokens.apply_if_current(panel_id, token, lambda: panel.show(comments))
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, List, TypeVar


T = TypeVar("T")


class RequestDeduplicator:
    """Share one in-flight task between callers using the same key."""

    def __init__(self):
        self._pending: Dict[Hashable, asyncio.Task] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        """Await the in-flight request for ``key``, starting it if needed.

        Args:
            key: Request identity (e.g. method + path)
            factory: Zero-argument callable returning the awaitable to run

        Returns:
            The request's result; failures propagate to every waiter
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda _t, k=key: self._forget(k, _t))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the exception retrieved when nobody is left waiting
        if not task.cancelled():
            task.exception()

    @property
    def pending(self) -> List[Hashable]:
        """Keys with a request currently in flight."""
        return list(self._pending)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._pending


class RequestTokens:
    """Monotonic request tokens per rendering context."""

    def __init__(self):
        self._counter = 0
        self._latest: Dict[Hashable, int] = {}

    def issue(self, context: Hashable) -> int:
        """Issue a new token for ``context``, superseding older ones."""
        self._counter += 1
        self._latest[context] = self._counter
        return self._counter

    def is_current(self, context: Hashable, token: int) -> bool:
        return self._latest.get(context) == token

    def apply_if_current(self, context: Hashable, token: int, callback: Callable[[], Any]) -> bool:
        """Run ``callback`` only if ``token`` is still the latest for ``context``.

        Returns:
            True if the callback ran, False if the response was stale
        """
        if not self.is_current(context, token):
            return False
        callback()
        return True

    def forget(self, context: Hashable) -> None:
        """Drop a context, making every outstanding token for it stale."""
        self._latest.pop(context, None)
