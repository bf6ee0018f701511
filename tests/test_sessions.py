from __future__ import annotations

import json
import os
import stat
import time

import pytest

from pokt_migration.errors import InvalidParameterError, SessionError, SessionNotFoundError
from pokt_migration.schemas import UnitResultRecord, WalletRecord
from pokt_migration.sessions import FilesystemSessionStore


def test_unknown_session_raises(store) -> None:
    with pytest.raises(SessionNotFoundError):
        store.get_session("does-not-exist")


def test_session_id_is_validated(store) -> None:
    with pytest.raises(InvalidParameterError):
        store.get_session("../escape")


def test_new_stake_session_has_no_units(store) -> None:
    descriptor = store.create_session("stake-provisioning", {"number_of_nodes": 2})
    assert descriptor.kind == "stake-provisioning"
    assert store.list_work_units(descriptor.id) == []
    assert (store.session_dir(descriptor.id) / "wallets").is_dir()


def test_create_session_is_idempotent_and_keeps_artifacts(store) -> None:
    first = store.create_session("stake-provisioning", {"owner": "a"}, session_id="fixed-id")
    store.record_artifact("fixed-id", 1, "stake_file", "stake_amount: 1upokt\n")

    second = store.create_session("stake-provisioning", {"owner": "b"}, session_id="fixed-id")

    assert second.params == {"owner": "a"}
    assert second.created_at == first.created_at
    assert [unit.name for unit in store.list_work_units("fixed-id")] == ["node_1"]


def test_create_session_rejects_same_id_with_other_kind(store) -> None:
    store.create_session("stake-provisioning", {"owner": "a"}, session_id="shared-id")

    with pytest.raises(SessionError, match="stake-provisioning"):
        store.create_session("migration", {"network": "beta"}, session_id="shared-id")

    assert store.get_session("shared-id").kind == "stake-provisioning"
    assert not (store.data_dir / "migration" / "shared-id").exists()


def test_session_descriptor_uses_camel_case_on_disk(store) -> None:
    descriptor = store.create_session("migration", {"network": "beta"})
    raw = json.loads((store.session_dir(descriptor.id) / "session_info.json").read_text())
    assert raw["createdAt"] == descriptor.created_at
    assert raw["kind"] == "migration"


def test_stake_units_follow_numeric_node_order(store) -> None:
    descriptor = store.create_session("stake-provisioning", {})
    for index in (10, 2, 1):
        store.record_artifact(descriptor.id, index, "stake_file", f"node: {index}\n")

    units = store.list_work_units(descriptor.id)

    assert [unit.name for unit in units] == ["node_1", "node_2", "node_10"]
    assert [unit.index for unit in units] == [1, 2, 10]
    assert all(unit.status == "pending" for unit in units)


def test_unit_results_round_trip(store) -> None:
    descriptor = store.create_session("stake-provisioning", {})
    store.record_artifact(descriptor.id, 1, "stake_file", "x: 1\n")
    store.record_unit_result(
        descriptor.id,
        UnitResultRecord(index=1, name="node_1", status="failed", attempts=3, error="boom"),
    )

    unit = store.list_work_units(descriptor.id)[0]
    assert unit.status == "failed"
    assert unit.attempts == 3
    assert unit.last_error == "boom"


def test_migration_input_is_private_and_outside_session_tree(store) -> None:
    descriptor = store.create_session("migration", {})
    path = store.record_artifact(descriptor.id, 1, "migration_input", "[]")

    assert path == store.input_dir / f"migration-input-{descriptor.id}.json"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert [unit.name for unit in store.list_work_units(descriptor.id)] == ["migration"]


def test_wallet_mnemonics_round_trip(store) -> None:
    descriptor = store.create_session("stake-provisioning", {})
    record = WalletRecord(
        node_number=1,
        wallet_name="node_1",
        address="pokt1abc",
        mnemonic="alpha beta",
        home_path="/tmp/home",
        stake_file="/tmp/stake.yaml",
    )
    path = store.save_wallet_mnemonics(descriptor.id, [record])

    raw = json.loads(path.read_text())
    assert raw["totalWallets"] == 1
    assert raw["wallets"][0]["walletName"] == "node_1"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    loaded = store.load_wallet_mnemonics(descriptor.id)
    assert loaded.wallets[0].mnemonic == "alpha beta"
    assert store.session_status(descriptor.id)["has_wallet_mnemonics"] is True


def test_wallet_home_is_not_a_file_artifact(store) -> None:
    descriptor = store.create_session("stake-provisioning", {})
    with pytest.raises(InvalidParameterError):
        store.record_artifact(descriptor.id, 1, "wallet_home", "x")


def test_cleanup_temp_files_by_age(tmp_path) -> None:
    store = FilesystemSessionStore(tmp_path / "data")
    store.ensure_layout()
    old = store.temp_dir / "old.txt"
    fresh = store.temp_dir / "fresh.txt"
    old.write_text("x")
    fresh.write_text("y")
    now = time.time()
    os.utime(old, (now - 7200, now - 7200))

    removed = store.cleanup_temp_files(3600, now=now)

    assert removed == [old]
    assert not old.exists()
    assert fresh.exists()


def test_cleanup_migration_inputs_keeps_output(store) -> None:
    descriptor = store.create_session("migration", {})
    input_path = store.record_artifact(descriptor.id, 1, "migration_input", "[]")
    output_path = store.record_artifact(descriptor.id, 1, "migration_output", "{}")
    temp_file = store.temp_dir / f"claim-{descriptor.id}.json"
    temp_file.write_text("{}")

    removed = store.cleanup_migration_inputs(descriptor.id)

    assert set(removed) == {input_path, temp_file}
    assert output_path.exists()
