from __future__ import annotations

import hashlib
import json
from collections import defaultdict, deque
from pathlib import Path
from typing import Callable

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from pokt_migration.commands import CommandBuilder, CommandInvocation, KeyringTarget
from pokt_migration.errors import BinaryUnavailableError, CommandFailedError
from pokt_migration.keyring import KeyringManager
from pokt_migration.orchestrator import BatchOrchestrator
from pokt_migration.retry import RetryPolicy
from pokt_migration.runner import ProcessResult
from pokt_migration.sessions import FilesystemSessionStore

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
DESTINATION = "pokt1" + "q" * 38
OWNER_ADDRESS = "pokt1" + "p" * 38
MNEMONIC = " ".join(["abandon"] * 11 + ["about"])


def fake_address(seed: str) -> str:
    digest = hashlib.sha512(seed.encode("utf-8")).digest()
    return "pokt1" + "".join(BECH32_CHARSET[byte % 32] for byte in digest[:38])


def make_morse_key(*, expanded: bool = False) -> str:
    private = Ed25519PrivateKey.generate()
    seed = private.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    if not expanded:
        return seed.hex()
    public = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return (seed + public).hex()


def ok(stdout: str = "", stderr: str = "") -> ProcessResult:
    return ProcessResult(argv=(), exit_code=0, stdout=stdout, stderr=stderr, duration=0.0)


def fail(stderr: str, *, stdout: str = "", exit_code: int = 1) -> CommandFailedError:
    return CommandFailedError(
        f"command failed with exit code {exit_code}",
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
    )


def flag_value(argv: tuple[str, ...], flag: str) -> str | None:
    for position, part in enumerate(argv):
        if part == flag and position + 1 < len(argv):
            return argv[position + 1]
        if part.startswith(flag + "="):
            return part.split("=", 1)[1]
    return None


class FakePocketd:
    """In-memory stand-in for ``pocketd``: a keyring per ``--home`` plus scripted tx replies."""

    def __init__(self) -> None:
        self.calls: list[CommandInvocation] = []
        self.keyrings: dict[str, dict[str, dict]] = defaultdict(dict)
        self.imported_files: list[tuple[Path, str, bool]] = []
        self.binary_error: BinaryUnavailableError | None = None
        self.binary_checks = 0
        self._scripts: dict[str, deque] = defaultdict(deque)

    def script(self, description: str, *responses) -> None:
        """Queue replies for an invocation description (str stdout, ProcessResult, exception or callable)."""
        self._scripts[description].extend(responses)

    def add_key(self, home: str, name: str, address: str | None = None) -> str:
        address = address or fake_address(f"{home}/{name}")
        self.keyrings[str(Path(home).resolve())][name] = {"name": name, "type": "local", "address": address}
        return address

    def calls_for(self, description: str) -> list[CommandInvocation]:
        return [call for call in self.calls if call.description == description]

    def check_binary(self, timeout: float = 10.0) -> str:
        self.binary_checks += 1
        if self.binary_error is not None:
            raise self.binary_error
        return "v0.1.20"

    def run(self, invocation: CommandInvocation) -> ProcessResult:
        self.calls.append(invocation)
        queue = self._scripts.get(invocation.description)
        if queue:
            response = queue.popleft()
            if callable(response) and not isinstance(response, BaseException):
                response = response(invocation)
            if isinstance(response, BaseException):
                raise response
            if isinstance(response, ProcessResult):
                return response
            return ok(str(response))
        if invocation.description.startswith("keys"):
            return self._keys(invocation)
        return ok("")

    def _keys(self, invocation: CommandInvocation) -> ProcessResult:
        argv = invocation.argv
        home = flag_value(argv, "--home") or ""
        keyring = self.keyrings[home]
        action = argv[2]
        name = argv[3] if len(argv) > 3 else ""

        if action == "list":
            return ok(json.dumps(list(keyring.values())))
        if action == "show":
            if name not in keyring:
                raise fail(f"Error: {name} is not a valid name or address: key not found")
            return ok(json.dumps(keyring[name]))
        if action == "delete":
            if name not in keyring:
                raise fail(f"Error: {name}: key not found")
            del keyring[name]
            return ok("Key deleted forever (uh oh!)")
        if action in ("add", "import"):
            if name in keyring:
                raise fail(f"Error: cannot overwrite key: {name} already exists")
            if action == "import":
                key_path = Path(argv[4])
                self.imported_files.append((key_path, key_path.read_text(encoding="utf-8"), key_path.exists()))
                seed = key_path.read_text(encoding="utf-8")
            elif "--recover" in argv:
                seed = invocation.stdin or ""
            else:
                seed = f"{home}/{name}/new"
            record = {"name": name, "type": "local", "address": fake_address(seed)}
            keyring[name] = record
            payload = dict(record)
            if action == "add" and "--recover" not in argv:
                payload["mnemonic"] = " ".join(["word"] * 23 + [name.replace("_", "")[:8] or "last"])
            return ok(json.dumps(payload))
        raise fail(f"unsupported keys action {action}")


@pytest.fixture
def pocketd() -> FakePocketd:
    return FakePocketd()


@pytest.fixture
def store(tmp_path) -> FilesystemSessionStore:
    data_store = FilesystemSessionStore(tmp_path / "data")
    data_store.ensure_layout()
    return data_store


@pytest.fixture
def target(tmp_path) -> KeyringTarget:
    return KeyringTarget(home=str(tmp_path / "pocketd-home"), backend="test")


@pytest.fixture
def builder() -> CommandBuilder:
    return CommandBuilder("pocketd")


@pytest.fixture
def keyring(pocketd, builder, store) -> KeyringManager:
    return KeyringManager(pocketd, builder, temp_dir=store.temp_dir)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(store, pocketd, sleeps) -> BatchOrchestrator:
    return BatchOrchestrator(
        store,
        pocketd,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=30.0),
        inter_transaction_delay=30.0,
        sleep=sleeps.append,
    )


def write_claim_output(mappings: list[dict], *, tx_hash: str = "ABCDEF0123456789") -> Callable:
    def _write(invocation: CommandInvocation) -> ProcessResult:
        output_file = Path(flag_value(invocation.argv, "--output-file"))
        output_file.write_text(
            json.dumps({"mappings": mappings, "tx_hash": tx_hash, "tx_code": 0}), encoding="utf-8"
        )
        return ok(f"txhash: {tx_hash}\ncode: 0\n")

    return _write
