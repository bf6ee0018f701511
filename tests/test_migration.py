from __future__ import annotations

import json

import pytest

from pokt_migration.credentials import Mnemonic, RawHexKey, WalletJson
from pokt_migration.crypto.morse_keys import derive_morse_address
from pokt_migration.errors import (
    CommandTimeoutError,
    FallbackIdentityUnavailableError,
    InvalidCredentialFormatError,
    InvalidParameterError,
)
from pokt_migration.migration import (
    MigrationExecutor,
    MigrationRequest,
    describe_keys,
    parse_claim_output,
    validate_armored_key,
)

from conftest import DESTINATION, MNEMONIC, fail, flag_value, make_morse_key, ok, write_claim_output

ARMORED = {
    "kdf": "scrypt",
    "salt": "0F1E2D3C4B5A69788796A5B4C3D2E1F0",
    "secparam": "12",
    "hint": "",
    "ciphertext": "c2VjcmV0LWNpcGhlcnRleHQ=",
}


@pytest.fixture
def executor(store, pocketd, builder, keyring, target, orchestrator) -> MigrationExecutor:
    return MigrationExecutor(
        store=store,
        runner=pocketd,
        builder=builder,
        keyring=keyring,
        target=target,
        orchestrator=orchestrator,
    )


def _keys(count: int) -> list[RawHexKey]:
    return [RawHexKey.from_text(make_morse_key()) for _ in range(count)]


def _mappings(keys: list[RawHexKey]) -> list[dict]:
    return [
        {
            "morse_src_address": derive_morse_address(key.hex),
            "shannon_dest_address": DESTINATION,
            "unstaked_balance": {"denom": "upokt", "amount": "1000000"},
        }
        for key in keys
    ]


def test_three_keys_with_fallback_signer(executor, pocketd, store, target) -> None:
    pocketd.add_key(target.home, "alice")
    keys = _keys(3)
    pocketd.script("tx migration claim-accounts", write_claim_output(_mappings(keys)))

    result = executor.execute(MigrationRequest(credentials=keys, destination=DESTINATION, network="beta"))

    assert result.succeeded
    assert len(result.mappings) == 3
    assert result.mappings[0]["unstaked_balance"]["amount"] == "1000000"
    assert result.tx_hash == "ABCDEF0123456789"
    assert result.signer == "alice"
    assert result.signer_source == "fallback"

    claim = pocketd.calls_for("tx migration claim-accounts")[0]
    assert "--from=alice" in claim.argv
    input_file = flag_value(claim.argv, "--input-file")
    assert json.loads(open(input_file, encoding="utf-8").read()) == [key.hex for key in keys]
    for key in keys:
        assert all(key.hex not in part for part in claim.argv)

    status = executor.status(result.session_id)
    assert status["status"] == "completed"
    assert status["accounts_migrated"] == 3


def test_caller_signer_is_imported_and_preferred(executor, pocketd) -> None:
    keys = _keys(1)
    pocketd.script("tx migration claim-accounts", write_claim_output(_mappings(keys)))

    result = executor.execute(
        MigrationRequest(
            credentials=keys,
            destination=DESTINATION,
            signer_credential=Mnemonic.from_text(MNEMONIC),
        )
    )

    expected_name = f"shannon-{result.session_id[:8]}"
    assert result.signer == expected_name
    assert result.signer_source == "override"
    assert f"--from={expected_name}" in pocketd.calls_for("tx migration claim-accounts")[0].argv
    assert pocketd.calls_for("keys show") == []


def test_failed_signer_import_falls_back(executor, pocketd, target) -> None:
    pocketd.add_key(target.home, "alice")
    keys = _keys(1)
    pocketd.script("keys add --recover", fail("Error: invalid mnemonic"))
    pocketd.script("tx migration claim-accounts", write_claim_output(_mappings(keys)))

    result = executor.execute(
        MigrationRequest(
            credentials=keys,
            destination=DESTINATION,
            signer_credential=Mnemonic.from_text(MNEMONIC),
        )
    )

    assert result.succeeded
    assert result.signer == "alice"
    assert "import failed" in result.signer_reason


def test_already_claimed_is_reported_and_inputs_removed(executor, pocketd, store, target) -> None:
    pocketd.add_key(target.home, "alice")
    keys = _keys(1)
    morse = derive_morse_address(keys[0].hex)
    pocketd.script(
        "tx migration claim-accounts",
        fail(
            f'morse address "{morse}" has already been claimed at height 812 '
            f'by shannon address "{DESTINATION}"'
        ),
    )

    result = executor.execute(MigrationRequest(credentials=keys, destination=DESTINATION))

    assert not result.succeeded
    assert result.error_type == "already_claimed"
    assert "812" in result.error
    assert not store.artifact_path(result.session_id, 1, "migration_input").exists()
    assert len(pocketd.calls_for("tx migration claim-accounts")) == 1


def test_claim_timeout_is_reported_without_retry(executor, pocketd, target, sleeps) -> None:
    pocketd.add_key(target.home, "alice")
    pocketd.script(
        "tx migration claim-accounts",
        CommandTimeoutError(
            "command timed out after 120s",
            timeout=120.0,
            stderr="account sequence mismatch, expected 5, got 4",
        ),
    )

    result = executor.execute(MigrationRequest(credentials=_keys(1), destination=DESTINATION))

    assert result.status == "failed"
    assert result.error_type == "timeout"
    assert result.attempts == 1
    assert sleeps == []
    assert len(pocketd.calls_for("tx migration claim-accounts")) == 1


def test_missing_output_file_fails_the_unit(executor, pocketd, target) -> None:
    pocketd.add_key(target.home, "alice")
    pocketd.script("tx migration claim-accounts", ok("txhash: ABCDEF0123456789\n"))

    result = executor.execute(MigrationRequest(credentials=_keys(1), destination=DESTINATION))

    assert result.status == "failed"
    assert "output file" in result.error


def test_no_signer_available_raises_and_cleans_up(executor, pocketd, store) -> None:
    pocketd.script("keys add", fail("Error: keyring is read-only"))

    with pytest.raises(FallbackIdentityUnavailableError):
        executor.execute(MigrationRequest(credentials=_keys(1), destination=DESTINATION))

    assert list(store.input_dir.iterdir()) == []
    assert pocketd.calls_for("tx migration claim-accounts") == []


def test_request_validation_happens_before_any_session(executor, store) -> None:
    with pytest.raises(InvalidParameterError):
        executor.execute(MigrationRequest(credentials=_keys(11), destination=DESTINATION))
    with pytest.raises(InvalidParameterError):
        executor.execute(MigrationRequest(credentials=[], destination=DESTINATION))
    with pytest.raises(InvalidParameterError):
        executor.execute(MigrationRequest(credentials=_keys(1), destination="cosmos1abc"))

    mismatched = WalletJson(priv=make_morse_key(), addr="0" * 40)
    with pytest.raises(InvalidCredentialFormatError):
        executor.execute(MigrationRequest(credentials=[mismatched], destination=DESTINATION))

    assert list((store.data_dir / "migration").iterdir()) == []


def test_claim_armored_extracts_fields(executor, pocketd, target) -> None:
    pocketd.add_key(target.home, "alice")
    stdout = (
        "morse_public_key: 9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08\n"
        "morse_signature: 0a0b0c\n"
        f"shannon_dest_address: {DESTINATION}\n"
        "shannon_signing_address: pokt1signer\n"
        "code: 0\n"
        "txhash: 00112233445566778899AABBCCDDEEFF\n"
    )
    pocketd.script("tx migration claim-account", ok(stdout))

    result = executor.claim_armored(json.dumps(ARMORED), network="main", passphrase="pw")

    assert result.succeeded
    assert result.tx_hash == "00112233445566778899AABBCCDDEEFF"
    assert result.extracted["shannon_dest_address"] == DESTINATION
    call = pocketd.calls_for("tx migration claim-account")[0]
    assert call.stdin == "pw\n"
    assert "--network=main" in call.argv


def test_claim_armored_without_tx_hash_fails(executor, pocketd, target) -> None:
    pocketd.add_key(target.home, "alice")
    pocketd.script("tx migration claim-account", ok("morse_public_key: abc\n"))

    result = executor.claim_armored(ARMORED)

    assert not result.succeeded
    assert "no transaction hash" in result.error


def test_validate_armored_key_requires_fields() -> None:
    with pytest.raises(InvalidParameterError, match="ciphertext"):
        validate_armored_key({k: v for k, v in ARMORED.items() if k != "ciphertext"})
    with pytest.raises(InvalidParameterError):
        validate_armored_key("not json")


def test_describe_keys_reports_addresses_only() -> None:
    key = make_morse_key(expanded=True)
    described = describe_keys([RawHexKey.from_text(key)])
    assert described == [
        {"index": 1, "morse_address": derive_morse_address(key), "key_length": 128, "format": "raw_hex"}
    ]


def test_parse_claim_output_missing_fields() -> None:
    parsed = parse_claim_output("shannon_dest_address: pokt1xyz\n")
    assert parsed["shannon_dest_address"] == "pokt1xyz"
    assert parsed["morse_signature"] is None
