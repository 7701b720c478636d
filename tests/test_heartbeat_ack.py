"""Tests for the heartbeat acknowledgment protocol."""

from __future__ import annotations

import pytest

from ymbot.heartbeat.ack import (
    FINAL_RESPONSE_MARKER,
    HEARTBEAT_OK_TOKEN,
    AckKind,
    classify_ack,
    extract_final_response,
)


class TestClassifyAck:
    """Tests for classify_ack function."""

    def test_exact_token_is_suppressed(self) -> None:
        decision = classify_ack("HEARTBEAT_OK")
        assert decision.notify is False
        assert decision.kind is AckKind.ACK

    def test_exact_token_with_whitespace(self) -> None:
        decision = classify_ack("  \nHEARTBEAT_OK\n ")
        assert decision.notify is False
        assert decision.kind is AckKind.ACK

    def test_prefix_with_short_trailing_text(self) -> None:
        decision = classify_ack("HEARTBEAT_OK all quiet today", max_chars=20)
        assert decision.notify is False
        assert decision.kind is AckKind.SHORT_ACK
        assert decision.remainder == "all quiet today"

    def test_suffix_with_short_leading_text(self) -> None:
        decision = classify_ack("Checked inbox and CI. HEARTBEAT_OK", max_chars=30)
        assert decision.notify is False
        assert decision.remainder == "Checked inbox and CI."

    def test_remainder_exactly_at_threshold_is_suppressed(self) -> None:
        trailing = "x" * 10
        decision = classify_ack(f"{HEARTBEAT_OK_TOKEN} {trailing}", max_chars=10)
        assert decision.notify is False

    def test_remainder_over_threshold_notifies(self) -> None:
        trailing = "x" * 11
        decision = classify_ack(f"{HEARTBEAT_OK_TOKEN} {trailing}", max_chars=10)
        assert decision.notify is True
        assert decision.kind is AckKind.VERBOSE_ACK
        assert decision.remainder == trailing

    def test_suffix_over_threshold_notifies(self) -> None:
        leading = "Your build on main has been failing since 09:14. " * 10
        decision = classify_ack(f"{leading}{HEARTBEAT_OK_TOKEN}")
        assert decision.notify is True
        assert decision.kind is AckKind.VERBOSE_ACK

    def test_interior_token_notifies(self) -> None:
        decision = classify_ack("Inbox has 3 urgent mails. HEARTBEAT_OK otherwise.")
        assert decision.notify is True
        assert decision.kind is AckKind.EMBEDDED

    @pytest.mark.parametrize(
        "text",
        ["HEARTBEAT_OKAY, disk full", "HEARTBEAT_OK_BUT disk full", "NOT_HEARTBEAT_OK"],
    )
    def test_token_inside_longer_word_notifies(self, text: str) -> None:
        decision = classify_ack(text)
        assert decision.notify is True
        assert decision.kind is AckKind.EMBEDDED
        assert decision.remainder == text

    @pytest.mark.parametrize("text", ["HEARTBEAT_OK.", "Done: HEARTBEAT_OK"])
    def test_token_next_to_punctuation_is_suppressed(self, text: str) -> None:
        decision = classify_ack(text)
        assert decision.notify is False
        assert decision.kind is AckKind.SHORT_ACK

    def test_missing_token_notifies(self) -> None:
        decision = classify_ack("The deploy to staging failed.")
        assert decision.notify is True
        assert decision.kind is AckKind.ALERT
        assert decision.remainder == "The deploy to staging failed."

    def test_custom_token(self) -> None:
        assert classify_ack("ALL_GOOD", token="ALL_GOOD").notify is False
        assert classify_ack("HEARTBEAT_OK", token="ALL_GOOD").notify is True

    @pytest.mark.parametrize("max_chars", [0, 300])
    def test_default_threshold_is_respected(self, max_chars: int) -> None:
        decision = classify_ack("HEARTBEAT_OK fine", max_chars=max_chars)
        assert decision.notify is (max_chars == 0)


class TestExtractFinalResponse:
    """Tests for extract_final_response function."""

    def test_no_marker_returns_accumulated_text(self) -> None:
        assert extract_final_response("  Checked mail.\nHEARTBEAT_OK  ") == (
            "Checked mail.\nHEARTBEAT_OK"
        )

    def test_marker_in_final_payload(self) -> None:
        final = f"Ran the checks.\n{FINAL_RESPONSE_MARKER}\n\nCI is red on main."
        accumulated = "Let me look at CI.\n" + final
        assert extract_final_response(accumulated, final) == "CI is red on main."

    def test_marker_without_final_payload(self) -> None:
        text = f"Looking around...\n{FINAL_RESPONSE_MARKER}\nHEARTBEAT_OK"
        assert extract_final_response(text) == "HEARTBEAT_OK"

    def test_last_marker_wins(self) -> None:
        final = (
            f"{FINAL_RESPONSE_MARKER}\ndraft\n"
            f"{FINAL_RESPONSE_MARKER}\nThe real answer"
        )
        assert extract_final_response(final, final) == "The real answer"

    def test_final_without_marker_uses_accumulated(self) -> None:
        accumulated = "Reading HEARTBEAT.md\nNothing to report. HEARTBEAT_OK"
        assert extract_final_response(accumulated, "HEARTBEAT_OK") == accumulated

    def test_falls_back_to_final_when_no_text(self) -> None:
        assert extract_final_response("", "  HEARTBEAT_OK ") == "HEARTBEAT_OK"

    def test_empty_everything(self) -> None:
        assert extract_final_response("", None) == ""
