from __future__ import annotations

import io
import json
import logging

from pokt_migration.logs import REDACTED, JsonLineFormatter, RedactingFilter, configure_logging, sanitize_text

from conftest import MNEMONIC


def test_sanitize_text_redacts_key_material() -> None:
    key = "ab" * 32
    assert key not in sanitize_text(f"failed to import {key}")
    assert "abandon" not in sanitize_text(f"bad phrase: {MNEMONIC}")
    cleaned = sanitize_text('{"passphrase": "hunter2", "name": "owner"}')
    assert "hunter2" not in cleaned
    assert '"name": "owner"' in cleaned
    assert REDACTED in cleaned


def test_sanitize_text_keeps_ordinary_messages() -> None:
    message = "account sequence mismatch, expected 9, got 8"
    assert sanitize_text(message) == message


def test_redacting_filter_rewrites_record() -> None:
    record = logging.LogRecord("pokt_migration.test", logging.INFO, __file__, 1, "key=%s", ("cd" * 40,), None)

    assert RedactingFilter().filter(record) is True
    assert record.getMessage() == f"key={REDACTED}"


def test_json_formatter_emits_one_object_per_line() -> None:
    record = logging.LogRecord("pokt_migration.runner", logging.WARNING, __file__, 1, "slow %s", ("node",), None)
    payload = json.loads(JsonLineFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "pokt_migration.runner"
    assert payload["message"] == "slow node"


def test_configure_logging_installs_single_redacting_handler() -> None:
    stream = io.StringIO()
    logger = configure_logging("debug", "json", stream=stream)
    configure_logging("debug", "json", stream=stream)
    try:
        assert len(logger.handlers) == 1
        logging.getLogger("pokt_migration.keyring").debug("mnemonic: %s", "alpha")
        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert "alpha" not in line["message"]
        assert line["level"] == "DEBUG"
    finally:
        logger.handlers = []
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
