"""Filesystem-backed session records.

Layout under the data root::

    <data>/<kind-dir>/<session-id>/
        session_info.json
        wallets/<unit>/
        stake_files/stake_<unit>.yaml
        results/unit_<index>.json
        armored_key.json
        wallet_mnemonics.json
    <data>/input/migration-input-<session-id>.json
    <data>/output/migration-output-<session-id>.json
    <data>/temp/

Directory contents are the only source of truth; there is no index file.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Literal

from pydantic import ValidationError

from pokt_migration.errors import InvalidParameterError, SessionError, SessionNotFoundError
from pokt_migration.schemas import (
    SessionDescriptor,
    UnitResultRecord,
    WalletMnemonicsFile,
    WalletRecord,
)
from pokt_migration.types import SESSION_KIND_DIRS, normalize_session_kind

logger = logging.getLogger(__name__)

ArtifactKind = Literal[
    "stake_file",
    "wallet_home",
    "unit_result",
    "migration_input",
    "migration_output",
    "armored_key",
]
ARTIFACT_KINDS: tuple[str, ...] = (
    "stake_file",
    "wallet_home",
    "unit_result",
    "migration_input",
    "migration_output",
    "armored_key",
)

SESSION_INFO_FILE = "session_info.json"
WALLET_MNEMONICS_FILE = "wallet_mnemonics.json"
ARMORED_KEY_FILE = "armored_key.json"
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
STAKE_FILE_RE = re.compile(r"^stake_(?P<unit>[A-Za-z0-9_-]+)\.yaml$")
NODE_UNIT_RE = re.compile(r"^node_(\d+)$")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def unit_name(index: int) -> str:
    return f"node_{int(index)}"


def _natural_key(name: str) -> tuple:
    return tuple(int(part) if part.isdigit() else part for part in re.split(r"(\d+)", name))


def validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not SESSION_ID_RE.match(session_id):
        raise InvalidParameterError("session id must be 1-64 letters, numbers, hyphens or underscores")
    return session_id


def _atomic_write(path: Path, content: str | bytes, *, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        if mode is not None:
            os.chmod(tmp_path, mode)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_path, path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


def _json_text(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


@dataclass(frozen=True)
class WorkUnit:
    index: int
    name: str
    input_ref: Path
    status: str = "pending"
    attempts: int = 0
    last_error: str | None = None
    signer: str | None = None


class SessionStore(ABC):
    """Persistence boundary used by the batch orchestrator and executors."""

    @abstractmethod
    def create_session(
        self, kind: str, params: dict[str, Any], session_id: str | None = None
    ) -> SessionDescriptor: ...

    @abstractmethod
    def get_session(self, session_id: str) -> SessionDescriptor: ...

    @abstractmethod
    def list_work_units(self, session_id: str) -> list[WorkUnit]: ...

    @abstractmethod
    def artifact_path(self, session_id: str, unit_index: int, kind: str) -> Path: ...

    @abstractmethod
    def record_artifact(
        self, session_id: str, unit_index: int, kind: str, content: str | bytes
    ) -> Path: ...

    @abstractmethod
    def session_lock(self, session_id: str) -> threading.Lock: ...


class FilesystemSessionStore(SessionStore):
    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def input_dir(self) -> Path:
        return self.data_dir / "input"

    @property
    def output_dir(self) -> Path:
        return self.data_dir / "output"

    @property
    def temp_dir(self) -> Path:
        return self.data_dir / "temp"

    def ensure_layout(self) -> None:
        for directory in (self.input_dir, self.output_dir, self.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)
        for kind_dir in SESSION_KIND_DIRS.values():
            (self.data_dir / kind_dir).mkdir(parents=True, exist_ok=True)

    def session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _session_dir_for(self, kind: str, session_id: str) -> Path:
        return self.data_dir / SESSION_KIND_DIRS[kind] / session_id

    def session_dir(self, session_id: str) -> Path:
        return self._session_dir_for(self.get_session(session_id).kind, session_id)

    def _read_descriptor(self, path: Path) -> SessionDescriptor:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return SessionDescriptor.model_validate(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise SessionError(f"unreadable session descriptor: {path}") from exc

    def create_session(
        self,
        kind: str,
        params: dict[str, Any],
        session_id: str | None = None,
        *,
        created_at: str | None = None,
    ) -> SessionDescriptor:
        """Allocate a session tree.

        Re-creating an existing id keeps its descriptor and artifacts. Reusing an id
        under a different kind raises ``SessionError``.
        """
        kind = normalize_session_kind(kind)
        session_id = validate_session_id(session_id) if session_id else str(uuid.uuid4())
        self.ensure_layout()

        root = self._session_dir_for(kind, session_id)
        info_path = root / SESSION_INFO_FILE
        with self.session_lock(session_id):
            try:
                existing = self.get_session(session_id)
            except SessionNotFoundError:
                existing = None
            if existing is not None:
                if existing.kind != kind:
                    raise SessionError(
                        f"session {session_id} already exists as a {existing.kind} session"
                    )
                logger.info("session %s already exists; keeping descriptor", session_id)
                return existing

            subdirs = ["results"]
            if kind == "stake-provisioning":
                subdirs += ["wallets", "stake_files"]
            for name in subdirs:
                (root / name).mkdir(parents=True, exist_ok=True)
            descriptor = SessionDescriptor(
                id=session_id,
                kind=kind,
                params=dict(params),
                created_at=created_at or _utc_now_iso(),
            )
            _atomic_write(info_path, _json_text(descriptor.model_dump(by_alias=True)))
        logger.info("created %s session %s", kind, session_id)
        return descriptor

    def get_session(self, session_id: str) -> SessionDescriptor:
        validate_session_id(session_id)
        for kind in SESSION_KIND_DIRS:
            info_path = self._session_dir_for(kind, session_id) / SESSION_INFO_FILE
            if info_path.exists():
                return self._read_descriptor(info_path)
        raise SessionNotFoundError(f"session {session_id} not found")

    def artifact_path(self, session_id: str, unit_index: int, kind: str) -> Path:
        validate_session_id(session_id)
        if kind not in ARTIFACT_KINDS:
            raise InvalidParameterError("artifact kind must be one of: " + ", ".join(ARTIFACT_KINDS))
        if kind == "migration_input":
            return self.input_dir / f"migration-input-{session_id}.json"
        if kind == "migration_output":
            return self.output_dir / f"migration-output-{session_id}.json"

        root = self.session_dir(session_id)
        if kind == "armored_key":
            return root / ARMORED_KEY_FILE
        if int(unit_index) < 1:
            raise InvalidParameterError("unit index must be >= 1")
        if kind == "unit_result":
            return root / "results" / f"unit_{int(unit_index)}.json"
        if kind == "wallet_home":
            return root / "wallets" / unit_name(unit_index)
        return root / "stake_files" / f"stake_{unit_name(unit_index)}.yaml"

    def record_artifact(
        self, session_id: str, unit_index: int, kind: str, content: str | bytes
    ) -> Path:
        if kind == "wallet_home":
            raise InvalidParameterError("wallet homes are directories, not file artifacts")
        path = self.artifact_path(session_id, unit_index, kind)
        with self.session_lock(session_id):
            _atomic_write(path, content, mode=0o600 if kind in ("migration_input", "armored_key") else None)
        logger.debug("recorded %s artifact for session %s unit %s", kind, session_id, unit_index)
        return path

    def record_unit_result(self, session_id: str, record: UnitResultRecord) -> Path:
        return self.record_artifact(
            session_id, record.index, "unit_result", _json_text(record.model_dump())
        )

    def load_unit_result(self, session_id: str, unit_index: int) -> UnitResultRecord | None:
        path = self.artifact_path(session_id, unit_index, "unit_result")
        if not path.exists():
            return None
        try:
            return UnitResultRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise SessionError(f"unreadable unit result: {path}") from exc

    def _stake_units(self, session_id: str, root: Path) -> list[tuple[int, str, Path]]:
        stake_dir = root / "stake_files"
        if not stake_dir.is_dir():
            return []
        named: list[tuple[str, Path]] = []
        for entry in stake_dir.iterdir():
            match = STAKE_FILE_RE.match(entry.name)
            if entry.is_file() and match:
                named.append((match.group("unit"), entry))
        named.sort(key=lambda item: _natural_key(item[0]))

        units: list[tuple[int, str, Path]] = []
        used = {int(m.group(1)) for name, _ in named if (m := NODE_UNIT_RE.match(name))}
        next_free = max(used, default=0) + 1
        for name, path in named:
            match = NODE_UNIT_RE.match(name)
            if match:
                index = int(match.group(1))
            else:
                index = next_free
                next_free += 1
            units.append((index, name, path))
        units.sort(key=lambda item: item[0])
        return units

    def list_work_units(self, session_id: str) -> list[WorkUnit]:
        descriptor = self.get_session(session_id)
        root = self._session_dir_for(descriptor.kind, session_id)

        if descriptor.kind == "stake-provisioning":
            raw_units = self._stake_units(session_id, root)
        else:
            input_path = self.artifact_path(session_id, 1, "migration_input")
            armored_path = root / ARMORED_KEY_FILE
            if input_path.exists() or (root / "results" / "unit_1.json").exists():
                raw_units = [(1, "migration", input_path)]
            elif armored_path.exists():
                raw_units = [(1, "claim-account", armored_path)]
            else:
                raw_units = []

        units: list[WorkUnit] = []
        for index, name, ref in raw_units:
            result = self.load_unit_result(session_id, index)
            if result is None:
                units.append(WorkUnit(index=index, name=name, input_ref=ref))
            else:
                units.append(
                    WorkUnit(
                        index=index,
                        name=name,
                        input_ref=ref,
                        status=result.status,
                        attempts=result.attempts,
                        last_error=result.error,
                        signer=result.signer,
                    )
                )
        return units

    def save_wallet_mnemonics(
        self, session_id: str, wallets: Iterable[WalletRecord], *, created_at: str | None = None
    ) -> Path:
        root = self.session_dir(session_id)
        records = list(wallets)
        document = WalletMnemonicsFile(
            session_id=session_id,
            created_at=created_at or _utc_now_iso(),
            total_wallets=len(records),
            wallets=records,
        )
        path = root / WALLET_MNEMONICS_FILE
        with self.session_lock(session_id):
            _atomic_write(path, _json_text(document.model_dump(by_alias=True)), mode=0o600)
        return path

    def load_wallet_mnemonics(self, session_id: str) -> WalletMnemonicsFile:
        path = self.session_dir(session_id) / WALLET_MNEMONICS_FILE
        if not path.exists():
            raise SessionNotFoundError(f"session {session_id} has no wallet mnemonics")
        try:
            return WalletMnemonicsFile.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise SessionError(f"unreadable wallet mnemonics file for session {session_id}") from exc

    def session_status(self, session_id: str) -> dict[str, Any]:
        descriptor = self.get_session(session_id)
        root = self._session_dir_for(descriptor.kind, session_id)
        units = self.list_work_units(session_id)
        counts = {"pending": 0, "succeeded": 0, "failed": 0}
        for unit in units:
            counts[unit.status] = counts.get(unit.status, 0) + 1

        wallets_dir = root / "wallets"
        wallets = sorted(
            (entry.name for entry in wallets_dir.iterdir() if entry.is_dir()), key=_natural_key
        ) if wallets_dir.is_dir() else []

        status: dict[str, Any] = {
            "session_id": session_id,
            "kind": descriptor.kind,
            "created_at": descriptor.created_at,
            "params": descriptor.params,
            "wallets": wallets,
            "units": [
                {
                    "index": unit.index,
                    "name": unit.name,
                    "status": unit.status,
                    "attempts": unit.attempts,
                    "error": unit.last_error,
                }
                for unit in units
            ],
            "totals": counts,
            "has_wallet_mnemonics": (root / WALLET_MNEMONICS_FILE).exists(),
        }
        if descriptor.kind == "migration":
            status["has_output"] = self.artifact_path(session_id, 1, "migration_output").exists()
        return status

    def cleanup_temp_files(self, max_age: float, now: float | None = None) -> list[Path]:
        """Delete entries in the temp directory older than ``max_age`` seconds."""
        if not self.temp_dir.is_dir():
            return []
        cutoff = (now if now is not None else time.time()) - float(max_age)
        removed: list[Path] = []
        for entry in self.temp_dir.iterdir():
            try:
                if entry.stat().st_mtime >= cutoff:
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except FileNotFoundError:
                continue
            removed.append(entry)
        if removed:
            logger.info("removed %s stale temp entries", len(removed))
        return removed

    def cleanup_migration_inputs(self, session_id: str) -> list[Path]:
        """Remove a migration session's input and temp artifacts. Output is kept."""
        validate_session_id(session_id)
        removed: list[Path] = []
        candidates = [self.artifact_path(session_id, 1, "migration_input")]
        if self.temp_dir.is_dir():
            candidates.extend(entry for entry in self.temp_dir.iterdir() if session_id in entry.name)
        for path in candidates:
            if not path.exists():
                continue
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed.append(path)
        return removed
