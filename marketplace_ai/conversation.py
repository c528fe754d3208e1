"""
Conversation history normalization.

Some providers (Gemini chat sessions in particular) reject histories that do
not strictly alternate user / model turns or that open with a model turn.
Callers send whatever the frontend kept, so we reshape it here:

  1. drop entries without a role or without non-empty string content
  2. map roles onto USER / ASSISTANT
  3. merge consecutive user turns (joined with a space); collapse consecutive
     assistant turns to the most recent one
  4. drop leading turns until the first one is a user turn

An empty result means "no prior context": callers fall back to a single-shot
prompt instead of a chat-style call.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Optional

import structlog

from marketplace_ai.models import ChatRole, ChatTurn

logger = structlog.get_logger()

_USER_ROLES = frozenset({"user", "human"})


def _coerce_turn(entry: Any) -> Optional[ChatTurn]:
    """Turn a raw history entry into a ChatTurn, or None when it is unusable."""
    if isinstance(entry, ChatTurn):
        role, content = entry.role.value, entry.content
    elif isinstance(entry, Mapping):
        role, content = entry.get("role"), entry.get("content")
    else:
        return None
    if isinstance(role, ChatRole):
        role = role.value
    if not role or not isinstance(role, str):
        return None
    if not isinstance(content, str) or not content.strip():
        return None
    # Anything that is not the user is the model side (assistant / model / ai / system echoes)
    canonical = ChatRole.USER if role.strip().lower() in _USER_ROLES else ChatRole.ASSISTANT
    return ChatTurn(role=canonical, content=content)


def normalize_history(history: Optional[Iterable[Any]]) -> list[ChatTurn]:
    """Return a strictly alternating history that starts with a user turn."""
    if not history:
        return []

    valid = [turn for turn in (_coerce_turn(entry) for entry in history) if turn is not None]

    normalized: list[ChatTurn] = []
    for turn in valid:
        previous = normalized[-1] if normalized else None
        if previous is None or previous.role != turn.role:
            normalized.append(turn)
        elif turn.role == ChatRole.USER:
            normalized[-1] = ChatTurn(role=ChatRole.USER, content=f"{previous.content} {turn.content}")
        else:
            normalized[-1] = turn

    while normalized and normalized[0].role != ChatRole.USER:
        normalized.pop(0)

    if len(normalized) != len(valid):
        logger.debug(
            "conversation_history_normalized",
            received=len(valid),
            kept=len(normalized),
        )
    return normalized
