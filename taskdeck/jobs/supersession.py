"""Supersession guard for single-shot requests.

Issuing a new request through the guard cancels the one still pending, and
a cancelled request settles as ``None`` rather than raising, so callers can
tell "replaced by a newer request" apart from a genuine error.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SupersessionGuard:
    """Keeps at most one in-flight request per logical operation."""

    def __init__(self, name: str = "request"):
        self.name = name
        self._current: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._current is not None and not self._current.done()

    async def run(
        self, request: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> Optional[T]:
        """Run ``request``, cancelling any earlier request still in flight.

        Returns None if this request is superseded (or cancelled through
        ``cancel``) before its outcome is delivered. Genuine errors propagate.
        """
        self.cancel()
        self._generation += 1
        generation = self._generation
        task = asyncio.ensure_future(request(*args, **kwargs))
        self._current = task

        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.debug("%s #%d superseded", self.name, generation)
                return None
            # The caller itself was cancelled
            raise
        except Exception:
            if generation != self._generation:
                logger.debug("Discarding stale error of %s #%d", self.name, generation)
                return None
            raise
        finally:
            if self._current is task:
                self._current = None

        if generation != self._generation:
            # Settled after a newer request started; the result is stale
            logger.debug("Discarding stale result of %s #%d", self.name, generation)
            return None
        return result

    def cancel(self) -> bool:
        """Cancel the pending request, if any."""
        if not self.pending:
            return False
        logger.debug("Cancelling pending %s #%d", self.name, self._generation)
        self._generation += 1
        self._current.cancel()
        self._current = None
        return True
