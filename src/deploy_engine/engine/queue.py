"""Ordered queue of target declarations.

Deploy scripts may declare targets whose values are still being computed,
so declarations can resolve in any order. Later targets may depend on
earlier ones existing, so provider actions must still run in declaration
order. A single consumer task takes declarations off a FIFO queue, waits
for each one to resolve and applies it before looking at the next.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from ..errors import DeclarationError, DeployError

logger = structlog.get_logger()

DeployTarget = Dict[str, Any]


@dataclass
class Declaration:
    """One ``declare`` call, in the order it was made."""

    index: int
    hook: str
    pending: "asyncio.Future[DeployTarget]"  # The target's own resolution
    result: "asyncio.Future[DeployTarget]"  # Resolved once the target is applied


ApplyCallback = Callable[[Declaration, DeployTarget], Awaitable[DeployTarget]]


class DeclarationQueue:
    """FIFO of declarations drained by one consumer task."""

    def __init__(
        self,
        apply: ApplyCallback,
        on_first: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """Initialize queue.

        Args:
            apply: Coroutine reconciling one resolved declaration
            on_first: One-time setup run before the first declaration is applied
        """
        self._apply = apply
        self._on_first = on_first
        self._queue: "asyncio.Queue[Optional[Declaration]]" = asyncio.Queue()
        self._declarations: List[Declaration] = []
        self._closed = False
        self._aborted = False
        self._consumer: Optional[asyncio.Task] = None

    def put(self, hook: str, target: Union[DeployTarget, Awaitable[DeployTarget]]) -> asyncio.Future:
        """Declare a target.

        Args:
            hook: Hook reference of the target's provider
            target: Target fields, or an awaitable producing them

        Returns:
            Future resolving to the target once it has been applied

        Raises:
            DeclarationError: If declarations are already closed
        """
        if self._closed:
            raise DeclarationError(
                "Targets cannot be declared after the deploy script finished", hook=hook
            )

        loop = asyncio.get_running_loop()
        if inspect.isawaitable(target):
            pending = asyncio.ensure_future(target)
        else:
            pending = loop.create_future()
            pending.set_result(target)

        declaration = Declaration(
            index=len(self._declarations),
            hook=hook,
            pending=pending,
            result=loop.create_future(),
        )
        self._declarations.append(declaration)
        self._queue.put_nowait(declaration)
        logger.debug("queue.declared", index=declaration.index, hook=hook)
        return declaration.result

    def start(self) -> asyncio.Task:
        """Start the consumer task."""
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())
        return self._consumer

    def close(self):
        """Mark the end of declarations; the consumer finishes once drained."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def abort(self):
        """Stop the consumer after the action in flight, skipping the rest.

        Declarations still resolving are cancelled, so a consumer waiting on
        one of them stops immediately.
        """
        self._aborted = True
        for declaration in self._declarations:
            if not declaration.pending.done():
                declaration.pending.cancel()
        self.close()

    async def _consume(self):
        started = False
        try:
            while True:
                declaration = await self._queue.get()
                if declaration is None or self._aborted:
                    break

                target = await self._resolve(declaration)
                if target is None or self._aborted:
                    break

                if not started:
                    started = True
                    if self._on_first is not None:
                        await self._on_first()

                applied = await self._apply(declaration, target)
                if not declaration.result.done():
                    declaration.result.set_result(applied)
        finally:
            self._cancel_unfinished()

        logger.debug("queue.drained", declared=len(self._declarations))

    async def _resolve(self, declaration: Declaration) -> Optional[DeployTarget]:
        try:
            target = await declaration.pending
        except asyncio.CancelledError:
            if (
                self._aborted
                and declaration.pending.cancelled()
                and not asyncio.current_task().cancelling()
            ):
                return None
            raise
        except DeployError:
            raise
        except Exception as e:
            raise DeclarationError(
                f'Target #{declaration.index} for "{declaration.hook}" failed to resolve: {e}',
                index=declaration.index,
                hook=declaration.hook,
            ) from e

        if not isinstance(target, dict):
            raise DeclarationError(
                f'Target #{declaration.index} for "{declaration.hook}" resolved to '
                f"{type(target).__name__}, expected a mapping",
                index=declaration.index,
                hook=declaration.hook,
            )
        return target

    def _cancel_unfinished(self):
        for declaration in self._declarations:
            if not declaration.result.done():
                declaration.result.cancel()
            if not declaration.pending.done():
                declaration.pending.cancel()
            elif not declaration.pending.cancelled():
                # Skipped declarations may have failed; mark them retrieved
                declaration.pending.exception()
