from __future__ import annotations

import pytest

from pokt_migration.classify import (
    FailureKind,
    chain_error_for,
    classify_failure,
    parse_tx_response,
    raise_for_failure,
    raise_for_tx_response,
)
from pokt_migration.errors import (
    AccountNotFoundError,
    AlreadyClaimedError,
    ChainError,
    InsufficientFundsError,
    NoClaimableAccountsError,
    SequenceMismatchError,
)

from conftest import fail

CLAIMED = (
    'rpc error: code = FailedPrecondition desc = morse address "1f32488b1db60fe528ab21e3cc26c96696be3faa" '
    'has already been claimed at height 12345 by shannon address "pokt1abc"'
)


@pytest.mark.parametrize(
    ("text", "kind"),
    [
        ("account sequence mismatch, expected 12, got 11: incorrect account sequence", FailureKind.SEQUENCE_MISMATCH),
        ("tx failed: expected sequence 4 but got 3", FailureKind.SEQUENCE_MISMATCH),
        (CLAIMED, FailureKind.ALREADY_CLAIMED),
        ("insufficient funds: spendable balance 0upokt", FailureKind.INSUFFICIENT_FUNDS),
        ("account pokt1xyz not found: insufficient funds", FailureKind.INSUFFICIENT_FUNDS),
        ("Error: 0/3 claimable Morse accounts found in the snapshot", FailureKind.NO_CLAIMABLE_ACCOUNTS),
        ("account pokt1xyz not found", FailureKind.ACCOUNT_NOT_FOUND),
        ("Error: alice is not a valid name or address: key not found", FailureKind.KEY_NOT_FOUND),
        ("cannot overwrite key: owner already exists", FailureKind.ALREADY_EXISTS),
        ("Error: invalid mnemonic", FailureKind.INVALID_MNEMONIC),
        ("dial tcp 127.0.0.1:26657: connect: connection refused", FailureKind.CONNECTION_REFUSED),
        ("lookup rpc.example: no such host", FailureKind.UNKNOWN_HOST),
        ("something else broke", FailureKind.GENERIC),
        ("", FailureKind.GENERIC),
    ],
)
def test_classify_failure(text, kind) -> None:
    assert classify_failure(text) is kind


def test_already_claimed_details_are_extracted() -> None:
    error = chain_error_for(CLAIMED)
    assert isinstance(error, AlreadyClaimedError)
    assert error.morse_address == "1f32488b1db60fe528ab21e3cc26c96696be3faa"
    assert error.shannon_address == "pokt1abc"
    assert error.height == 12345
    assert "12345" in str(error)


def test_chain_error_for_types() -> None:
    assert isinstance(chain_error_for("insufficient funds"), InsufficientFundsError)
    assert isinstance(chain_error_for("account xyz not found"), AccountNotFoundError)
    assert isinstance(chain_error_for("0/2 claimable morse accounts found"), NoClaimableAccountsError)
    assert isinstance(chain_error_for("account sequence mismatch"), SequenceMismatchError)
    assert chain_error_for("generic failure") is None


def test_raise_for_failure_chains_original() -> None:
    original = fail("insufficient funds to pay fees")
    with pytest.raises(InsufficientFundsError) as excinfo:
        raise_for_failure(original)
    assert excinfo.value.__cause__ is original

    assert raise_for_failure(fail("unexpected panic")) is None


def test_parse_tx_response_yaml_and_json() -> None:
    yaml_body = "code: 0\ncodespace: \"\"\ntxhash: 0A1B2C3D4E5F60718293A4B5C6D7E8F9\n"
    assert parse_tx_response(yaml_body) == ("0A1B2C3D4E5F60718293A4B5C6D7E8F9", 0)

    json_body = '{"height":"0","txhash":"ABCDEF0123456789ABCDEF","codespace":"sdk","code":32,"raw_log":"x"}'
    assert parse_tx_response(json_body) == ("ABCDEF0123456789ABCDEF", 32)


def test_raise_for_tx_response_surfaces_sequence_mismatch() -> None:
    body = (
        "code: 32\ncodespace: sdk\n"
        "raw_log: 'account sequence mismatch, expected 8, got 7: incorrect account sequence'\n"
        "txhash: ABCDEF0123456789ABCDEF\n"
    )
    with pytest.raises(SequenceMismatchError):
        raise_for_tx_response(body)


def test_raise_for_tx_response_generic_rejection() -> None:
    with pytest.raises(ChainError, match="code 5"):
        raise_for_tx_response("code: 5\nraw_log: out of gas\ntxhash: ABCDEF0123456789\n")
    assert raise_for_tx_response("txhash: ABCDEF0123456789\ncode: 0\n") == "ABCDEF0123456789"
