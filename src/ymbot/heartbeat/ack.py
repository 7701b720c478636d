"""Acknowledgment protocol: decide whether a heartbeat answer reaches a human.

The engine is asked to reply with a sentinel token when nothing needs
attention. A reply is suppressed when it is exactly the token, or when the
token sits as a whole word at the very start or end and whatever remains
is short. Anything else (token buried mid-text, long remainder, no token)
is forwarded as-is.

The engine may also narrate freely and mark the user-facing part with a
heading; only the text after the last marker is classified.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..settings import DEFAULT_ACK_MAX_CHARS

HEARTBEAT_OK_TOKEN = "HEARTBEAT_OK"
FINAL_RESPONSE_MARKER = "## Final Response"


class AckKind(str, Enum):
    ACK = "ack"
    SHORT_ACK = "short_ack"
    VERBOSE_ACK = "verbose_ack"
    EMBEDDED = "embedded"
    ALERT = "alert"


@dataclass(frozen=True, slots=True)
class AckDecision:
    """Result of acknowledgment classification."""

    notify: bool
    kind: AckKind
    remainder: str


def extract_final_response(
    accumulated: str,
    final: str | None = None,
    *,
    marker: str = FINAL_RESPONSE_MARKER,
) -> str:
    """Pick the user-facing part of an engine answer.

    Args:
        accumulated: All text chunks the engine streamed.
        final: The payload of the engine's terminal message, if any.
        marker: Heading that introduces the user-facing section.

    Returns:
        The text after the last marker in the terminal message, or the whole
        accumulated text when there is no marker. Always trimmed.
    """
    terminal = final if final is not None else accumulated
    if marker in terminal:
        return terminal.rpartition(marker)[2].strip()
    text = accumulated.strip()
    if not text and final:
        return final.strip()
    return text


def _is_boundary(ch: str) -> bool:
    return not (ch.isalnum() or ch == "_")


def classify_ack(
    output: str,
    *,
    token: str = HEARTBEAT_OK_TOKEN,
    max_chars: int = DEFAULT_ACK_MAX_CHARS,
) -> AckDecision:
    text = output.strip()
    if text == token:
        return AckDecision(notify=False, kind=AckKind.ACK, remainder="")

    remainder: str | None = None
    # the token only counts as a whole word, so HEARTBEAT_OKAY is not an ack
    if text.startswith(token) and _is_boundary(text[len(token)]):
        remainder = text[len(token) :].strip()
    elif text.endswith(token) and _is_boundary(text[-len(token) - 1]):
        remainder = text[: -len(token)].strip()

    if remainder is not None:
        if len(remainder) <= max_chars:
            kind, notify = AckKind.SHORT_ACK, False
        else:
            kind, notify = AckKind.VERBOSE_ACK, True
        return AckDecision(notify=notify, kind=kind, remainder=remainder)

    if token in text:
        return AckDecision(notify=True, kind=AckKind.EMBEDDED, remainder=text)
    return AckDecision(notify=True, kind=AckKind.ALERT, remainder=text)
