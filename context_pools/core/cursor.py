"""Message cursor: position into the harness message sequence.

States are ``valid`` and ``invalidated``. A sequence continues the one seen
before when it is at least as long as the cursor and the message just
before the cursor still has the recorded signature. Anything else is a
replacement: the cursor jumps to the new end and ``generation`` increments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..types import CursorState, HarnessMessage, InvalidCursorState
from .messages import message_signature

logger = logging.getLogger(__name__)


@dataclass
class MessageCursor:
    position: int = 0
    signature: str | None = None
    generation: int = 0
    state: CursorState = CursorState.VALID

    def require_valid(self, messages: Sequence[HarnessMessage]) -> None:
        """Raise InvalidCursorState if ``messages`` does not extend the consumed prefix."""
        if len(messages) < self.position:
            raise InvalidCursorState(
                f"sequence shorter than cursor ({len(messages)} < {self.position})"
            )
        if self.position == 0:
            return
        seen = message_signature(messages[self.position - 1])
        if seen != self.signature:
            raise InvalidCursorState(f"message at {self.position - 1} no longer matches")

    def check(self, messages: Sequence[HarnessMessage]) -> bool:
        """Validate against ``messages``, resetting on replacement. Returns False if reset."""
        try:
            self.require_valid(messages)
        except InvalidCursorState as e:
            self.state = CursorState.INVALIDATED
            logger.info("Cursor invalidated (%s); skipping to end", e)
            self.reset(messages)
            return False
        self.state = CursorState.VALID
        return True

    def reset(self, messages: Sequence[HarnessMessage]) -> None:
        """Jump to the end of ``messages`` without consuming them."""
        self.position = len(messages)
        self.signature = message_signature(messages[-1]) if messages else None
        self.generation += 1
        self.state = CursorState.VALID

    def advanced(self, message: HarnessMessage) -> tuple[int, str]:
        """Position and signature after consuming ``message`` (not applied)."""
        return self.position + 1, message_signature(message)

    def advance(self, message: HarnessMessage) -> None:
        self.position, self.signature = self.advanced(message)

    def pending(self, messages: Sequence[HarnessMessage]) -> Sequence[HarnessMessage]:
        return messages[self.position:]
