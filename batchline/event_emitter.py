"""Event emitter used to signal batch delivery progress to the host."""

import logging
from typing import Any

from pyee.base import EventEmitter

logger = logging.getLogger(__name__)


class Emitter(EventEmitter):
    """Synchronous event emitter for upload lifecycle events.

    Handlers run on the thread that emits, which for completions is the
    session's worker thread or event loop.
    """

    UPLOAD_STARTED = "UPLOAD_STARTED"
    # (path)

    UPLOAD_COMPLETE = "UPLOAD_COMPLETE"
    # (path, outcome)

    UPLOAD_RETAINED = "UPLOAD_RETAINED"
    # (path, outcome) - retriable failure, file kept for the next flush

    BATCH_DROPPED = "BATCH_DROPPED"
    # (path, outcome) - terminal failure, file deleted

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Emit an event with logging.

        Args:
            event: The event name to emit.
            *args: Positional arguments to pass to handlers.
            **kwargs: Keyword arguments to pass to handlers.

        Returns:
            True if the event had listeners, False otherwise.
        """
        formatted_args = []
        for arg in args:
            r = repr(arg)
            formatted_args.append(f"{r[:100]}..." if len(r) > 100 else r)
        logger.debug("EVENT %s: %s", event, ", ".join(formatted_args))
        return super().emit(event, *args, **kwargs)
