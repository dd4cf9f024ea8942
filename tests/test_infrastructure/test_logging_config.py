"""Tests for log redaction of signing tokens and other secrets."""

from __future__ import annotations

from pay2start.logging_config import mask_sensitive_values


class TestMaskSensitiveValues:
    def test_long_token_keeps_a_short_prefix(self) -> None:
        event = {"event": "signing.viewed", "token": "a1b2c3d4e5f60718293a4b5c6d7e8f90"}

        masked = mask_sensitive_values(None, "info", event)

        assert masked["token"] == "a1b2***"

    def test_short_values_are_fully_hidden(self) -> None:
        masked = mask_sensitive_values(None, "info", {"password": "hunter2"})

        assert masked["password"] == "***"

    def test_other_keys_untouched(self) -> None:
        event = {"event": "void.completed", "contract_id": "c-1", "password": None}

        masked = mask_sensitive_values(None, "info", event)

        assert masked == {"event": "void.completed", "contract_id": "c-1", "password": None}
