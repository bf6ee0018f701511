"""Child-process execution for ``pocketd`` invocations."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from pokt_migration.commands import CommandInvocation
from pokt_migration.errors import BinaryUnavailableError, CommandFailedError, CommandTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_RUNNER_TIMEOUT = 60.0


@dataclass(frozen=True)
class RunnerConfig:
    binary: str = "pocketd"
    extra_path: tuple[str, ...] = ()
    cwd: str | None = None
    default_timeout: float = DEFAULT_RUNNER_TIMEOUT
    env: Mapping[str, str] = field(default_factory=dict)

    def child_env(self) -> dict[str, str]:
        merged = dict(os.environ)
        merged.update(self.env)
        if self.extra_path:
            parts = [merged.get("PATH", "")] if merged.get("PATH") else []
            parts.extend(str(Path(entry)) for entry in self.extra_path)
            merged["PATH"] = os.pathsep.join(parts)
        return merged


@dataclass(frozen=True)
class ProcessResult:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ProcessRunner:
    """Runs one invocation at a time and reports exit status, stdout and stderr."""

    def __init__(self, config: RunnerConfig | None = None) -> None:
        self.config = config or RunnerConfig()

    def run(self, invocation: CommandInvocation) -> ProcessResult:
        argv: Sequence[str] = invocation.argv
        timeout = invocation.timeout if invocation.timeout is not None else self.config.default_timeout
        logger.debug("running %s (timeout=%ss)", invocation.display(), timeout)

        started = time.monotonic()
        try:
            completed = subprocess.run(
                list(argv),
                input=invocation.stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.config.cwd,
                env=self.config.child_env(),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("%s timed out after %ss", invocation.description, timeout)
            raise CommandTimeoutError(
                f"{invocation.description} timed out after {timeout:g}s",
                timeout=timeout,
                argv=argv,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
            ) from exc
        except (FileNotFoundError, PermissionError) as exc:
            raise BinaryUnavailableError(
                f"cannot execute {argv[0]!r}: {exc.strerror or exc}"
            ) from exc
        except OSError as exc:
            raise BinaryUnavailableError(f"failed to spawn {argv[0]!r}: {exc}") from exc

        duration = time.monotonic() - started
        result = ProcessResult(
            argv=tuple(argv),
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=duration,
        )

        if result.exit_code != 0:
            logger.info(
                "%s exited with %s after %.1fs", invocation.description, result.exit_code, duration
            )
            raise CommandFailedError(
                f"{invocation.description} failed with exit code {result.exit_code}",
                argv=argv,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        if invocation.sensitive_output:
            logger.debug("%s finished in %.1fs (output withheld)", invocation.description, duration)
        else:
            logger.debug("%s finished in %.1fs", invocation.description, duration)
        return result

    def check_binary(self, timeout: float = 10.0) -> str:
        """Run ``<binary> version``; any failure means the binary is unusable."""
        invocation = CommandInvocation(
            argv=(self.config.binary, "version"), description="version", timeout=timeout
        )
        try:
            result = self.run(invocation)
        except BinaryUnavailableError:
            raise
        except CommandFailedError as exc:
            raise BinaryUnavailableError(f"{self.config.binary} is not usable: {exc}") from exc
        lines = result.output.strip().splitlines()
        return lines[0].strip() if lines else "unknown"
