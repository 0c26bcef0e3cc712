"""Conversation-state helpers for multi-turn voice chat."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from voice_assistant.models import ChatMessage


@dataclass(slots=True)
class ConversationState:
    """Bounded history of user/assistant turns sent along with each new utterance."""

    max_turns: int = 6
    history: deque[ChatMessage] = field(default_factory=deque)

    def messages_for(self, user_text: str, system_prompt: str) -> list[ChatMessage]:
        """Build ``[system, *history, user]`` for the next completion request."""
        messages = [ChatMessage(role="system", content=system_prompt)] if system_prompt else []
        messages.extend(self.history)
        messages.append(ChatMessage(role="user", content=user_text))
        return messages

    def record(self, user_text: str, assistant_text: str) -> None:
        self.history.append(ChatMessage(role="user", content=user_text))
        self.history.append(ChatMessage(role="assistant", content=assistant_text))
        while len(self.history) > self.max_turns * 2:
            self.history.popleft()

    def clear(self) -> None:
        self.history.clear()

    @property
    def turns(self) -> int:
        return len(self.history) // 2
