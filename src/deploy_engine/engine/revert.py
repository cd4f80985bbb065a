"""Rollback log collected while applying a deployment."""

import inspect
from typing import Awaitable, Callable, List, Optional, Tuple, Union

import structlog

from ..errors import ActionContext

logger = structlog.get_logger()

RevertFunction = Callable[[], Union[Awaitable[None], None]]


class RevertStack:
    """Ordered log of revert functions, global to one run.

    Entries are pushed after each successful plugin action and only ever
    consumed by ``drain``, newest first.
    """

    def __init__(self):
        self._entries: List[Tuple[ActionContext, RevertFunction]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def push(self, revert: RevertFunction, context: ActionContext):
        """Record how to undo a completed action.

        Args:
            revert: Zero-argument callable undoing the action
            context: Provider/action the revert belongs to
        """
        self._entries.append((context, revert))
        logger.debug("revert.pushed", action=str(context), depth=len(self._entries))

    async def drain(self) -> List[Tuple[ActionContext, BaseException]]:
        """Run every revert function in reverse push order.

        Each revert is attempted even if an earlier one failed.

        Returns:
            List of (context, error) for reverts that raised
        """
        failures: List[Tuple[ActionContext, BaseException]] = []

        while self._entries:
            context, revert = self._entries.pop()
            logger.info("revert.running", action=str(context))
            try:
                result: Optional[Awaitable[None]] = revert()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("revert.failed", action=str(context), error=str(e), exc_info=True)
                failures.append((context, e))

        return failures
