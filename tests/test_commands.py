from __future__ import annotations

import pytest

from pokt_migration.commands import (
    CLAIM_ACCOUNTS_GAS,
    CommandBuilder,
    GasPolicy,
    KeyringTarget,
    resolve_network,
    validate_shannon_address,
)
from pokt_migration.errors import InvalidParameterError

from conftest import DESTINATION, MNEMONIC


def test_resolve_network_aliases() -> None:
    assert resolve_network("mainnet").chain_id == "pocket"
    assert resolve_network("testnet").name == "beta"
    assert resolve_network(" BETA ").chain_id == "pocket-beta"
    with pytest.raises(InvalidParameterError):
        resolve_network("devnet")


def test_keyring_target_rejects_unknown_backend(tmp_path) -> None:
    with pytest.raises(InvalidParameterError):
        KeyringTarget(home=str(tmp_path), backend="vault")


def test_gas_policy_bounds() -> None:
    assert CLAIM_ACCOUNTS_GAS.flags() == [
        "--gas=auto",
        "--gas-adjustment=1.1",
        "--gas-prices=0.001upokt",
    ]
    with pytest.raises(InvalidParameterError):
        GasPolicy(adjustment=3.5, prices="1upokt")
    with pytest.raises(InvalidParameterError):
        GasPolicy(adjustment=1.5, prices="5upokt")


@pytest.mark.parametrize(
    "address",
    ["cosmos1" + "q" * 38, "pokt1short", "pokt1" + "b" * 38, "pokt" + "q" * 40],
)
def test_validate_shannon_address_rejects_bad_values(address) -> None:
    with pytest.raises(InvalidParameterError):
        validate_shannon_address(address)


def test_claim_accounts_argv_keeps_values_as_separate_elements(tmp_path) -> None:
    target = KeyringTarget(home=str(tmp_path / "home"))
    invocation = CommandBuilder("pocketd").claim_accounts(
        input_file=tmp_path / "in.json",
        output_file=tmp_path / "out.json",
        signer="alice",
        destination=DESTINATION,
        network=resolve_network("beta"),
        target=target,
    )
    argv = invocation.argv
    assert argv[:4] == ("pocketd", "tx", "migration", "claim-accounts")
    assert f"--input-file={(tmp_path / 'in.json').resolve()}" in argv
    assert "--home" in argv and argv[argv.index("--home") + 1] == target.home
    assert argv[argv.index("--keyring-backend") + 1] == "test"
    assert "--from=alice" in argv
    assert f"--destination={DESTINATION}" in argv
    assert "--network=beta" in argv
    assert "--chain-id=pocket-beta" in argv
    assert "--gas-adjustment=1.1" in argv
    assert argv[-1] == "--yes"
    assert invocation.timeout == 120.0


def test_builder_rejects_injection_in_identity_name(tmp_path) -> None:
    target = KeyringTarget(home=str(tmp_path))
    builder = CommandBuilder()
    with pytest.raises(InvalidParameterError):
        builder.keys_show("alice; rm -rf /", target)
    with pytest.raises(InvalidParameterError):
        builder.claim_accounts(
            input_file=tmp_path / "in.json",
            output_file=tmp_path / "out.json",
            signer="alice",
            destination="pokt1 --from=mallory",
            network=resolve_network("main"),
            target=target,
        )


def test_keys_recover_sends_mnemonic_on_stdin_only(tmp_path) -> None:
    invocation = CommandBuilder().keys_recover("owner", MNEMONIC, KeyringTarget(home=str(tmp_path)))
    assert "--recover" in invocation.argv
    assert all("abandon" not in part for part in invocation.argv)
    assert invocation.stdin == MNEMONIC + "\n"
    assert invocation.sensitive_stdin
    assert "redacted" in invocation.display()
    assert "abandon" not in invocation.display()


def test_claim_account_passphrase_handling(tmp_path) -> None:
    builder = CommandBuilder()
    target = KeyringTarget(home=str(tmp_path))
    without = builder.claim_account(
        armored_key_file=tmp_path / "key.json",
        signer="alice",
        network=resolve_network("main"),
        target=target,
    )
    assert "--no-passphrase" in without.argv
    assert without.stdin is None

    with_passphrase = builder.claim_account(
        armored_key_file=tmp_path / "key.json",
        signer="alice",
        network=resolve_network("main"),
        target=target,
        passphrase="hunter2",
    )
    assert "--no-passphrase" not in with_passphrase.argv
    assert all("hunter2" not in part for part in with_passphrase.argv)
    assert with_passphrase.stdin == "hunter2\n"
    assert "--gas-prices=1upokt" in with_passphrase.argv


def test_stake_supplier_generate_only_uses_owner_address(tmp_path) -> None:
    invocation = CommandBuilder().stake_supplier_generate_only(
        config_file=tmp_path / "stake_node_1.yaml",
        owner_address=DESTINATION,
        network=resolve_network("main"),
        target=KeyringTarget(home=str(tmp_path)),
    )
    assert f"--from={DESTINATION}" in invocation.argv
    assert "--generate-only" in invocation.argv
    assert "--yes" not in invocation.argv
