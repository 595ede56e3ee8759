"""
voice/recognizer.py — External speech recognizer adapter

The transcriber talks to speech recognition through the Recognizer protocol.
The production implementation drives a whisper.cpp command-line binary as a
child process:

    <exe> -m <model> -f <wav> -l <lang> -t <threads> --temperature <t>
          --beam-size <n> --prompt <ctx> -otxt -pp [--translate]

Exit status 0 means stdout carries the transcript. Anything else (non-zero
exit, deadline expiry, cancel) is reported back as an unsuccessful
RecognizerOutput; the transcriber turns that into its fallback result.

The executable is located once, at construction, by discover_executable():
    1. recognizer.executable (explicit override)
    2. recognizer.bundled_paths
    3. recognizer.executable_names on PATH
    4. recognizer.local_install_paths
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from voxledger.config.settings import RecognizerConfig
from voxledger.observability.logger import get_logger

log = get_logger(__name__)

_UNSET = object()

# How long to wait for a signalled process group to exit before giving up on it.
_REAP_GRACE_S = 2.0

# "[00:00:00.000 --> 00:00:02.480]  Add an expense of 500"
_TIMESTAMP_PREFIX = re.compile(r"^\s*\[[\d:.]+\s*-->\s*[\d:.]+\]\s*")


# ─────────────────────────────────────────────────────────────────────────────
# Types
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DecodeOptions:
    model_path: Path
    language: str = "en"
    threads: int = 4
    temperature: float = 0.0
    beam_size: int = 5
    translate: bool = False


@dataclass(frozen=True)
class RecognizerOutput:
    text: str
    exit_code: Optional[int] = None
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


@runtime_checkable
class Recognizer(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def recognize(
        self,
        audio_path: Path,
        prompt: str,
        timeout: float,
        options: DecodeOptions,
    ) -> RecognizerOutput: ...

    async def cancel(self) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────

def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def discover_executable(cfg: RecognizerConfig) -> Optional[Path]:
    """Return the first usable recognizer binary, or None."""
    if cfg.executable:
        p = Path(cfg.executable).expanduser()
        if _is_executable(p):
            return p
        log.warning("recognizer.override_not_executable", path=str(p))

    for candidate in cfg.bundled_paths:
        p = Path(candidate).expanduser()
        if _is_executable(p):
            return p

    for name in cfg.executable_names:
        found = shutil.which(name)
        if found:
            return Path(found)

    for candidate in cfg.local_install_paths:
        p = Path(candidate).expanduser()
        if _is_executable(p):
            return p

    return None


def clean_transcript(stdout: str) -> str:
    """Drop segment timestamps and blank lines, join the rest with spaces."""
    lines = []
    for line in stdout.splitlines():
        line = _TIMESTAMP_PREFIX.sub("", line).strip()
        if line:
            lines.append(line)
    return " ".join(lines).strip()


def signal_process_group(proc: asyncio.subprocess.Process, kill: bool) -> None:
    """
    SIGKILL (kill=True) or SIGTERM the recognizer and everything it forked.

    The child is spawned as a session leader, so its pid is also its process
    group id. A launcher script that execs or forks the real binary is covered.
    """
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL if kill else signal.SIGTERM)
        elif kill:
            proc.kill()
        else:
            proc.terminate()
    except (ProcessLookupError, PermissionError):
        pass


# ─────────────────────────────────────────────────────────────────────────────
# whisper.cpp adapter
# ─────────────────────────────────────────────────────────────────────────────

class WhisperCppRecognizer:
    """
    Runs one whisper.cpp process per recognize() call.

    Only one process is tracked at a time; the transcriber guarantees a
    single in-flight call per instance.
    """

    name = "whisper.cpp"

    def __init__(self, cfg: RecognizerConfig, executable: object = _UNSET) -> None:
        self._cfg = cfg
        if executable is _UNSET:
            self._executable = discover_executable(cfg)
        else:
            self._executable = Path(executable) if executable else None  # type: ignore[arg-type]
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._cancelled = False

        if self._executable is None:
            log.warning(
                "recognizer.not_found",
                searched=list(cfg.executable_names),
                hint="Build whisper.cpp and put whisper-cli on PATH, or set recognizer.executable",
            )
        else:
            log.info("recognizer.discovered", path=str(self._executable))

    @property
    def executable(self) -> Optional[Path]:
        return self._executable

    def is_available(self) -> bool:
        return self._executable is not None

    def build_args(self, audio_path: Path, prompt: str, options: DecodeOptions) -> list[str]:
        args = [
            "-m", str(options.model_path),
            "-f", str(audio_path),
            "-l", options.language,
            "-t", str(options.threads),
            "--temperature", str(options.temperature),
            "--beam-size", str(options.beam_size),
            "--prompt", prompt,
            "-otxt", "-pp",
        ]
        if options.translate:
            args.append("--translate")
        return args

    async def recognize(
        self,
        audio_path: Path,
        prompt: str,
        timeout: float,
        options: DecodeOptions,
    ) -> RecognizerOutput:
        if self._executable is None:
            return RecognizerOutput(text="", stderr="recognizer executable not found")

        self._cancelled = False
        args = self.build_args(audio_path, prompt, options)
        log.debug("recognizer.spawn", exe=str(self._executable), model=str(options.model_path))

        try:
            proc = await asyncio.create_subprocess_exec(
                str(self._executable),
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            log.warning("recognizer.spawn_failed", error=str(e))
            return RecognizerOutput(text="", stderr=str(e))

        self._proc = proc
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            signal_process_group(proc, kill=True)
            await self._reap(proc)
            log.warning("recognizer.timeout", timeout_s=timeout)
            return RecognizerOutput(text="", exit_code=proc.returncode, timed_out=True)
        except asyncio.CancelledError:
            # The awaiting task went away; the child must not outlive it.
            signal_process_group(proc, kill=True)
            await self._reap(proc)
            log.info("recognizer.task_cancelled", pid=proc.pid)
            raise
        finally:
            self._proc = None

        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if self._cancelled:
            log.info("recognizer.cancelled")
            return RecognizerOutput(text="", exit_code=proc.returncode, stderr=stderr, cancelled=True)

        if proc.returncode != 0:
            log.warning(
                "recognizer.failed",
                exit_code=proc.returncode,
                stderr=stderr[-500:],
            )
            return RecognizerOutput(text="", exit_code=proc.returncode, stderr=stderr)

        text = clean_transcript(stdout_bytes.decode("utf-8", errors="replace"))
        return RecognizerOutput(text=text, exit_code=0, stderr=stderr)

    @staticmethod
    async def _reap(proc: asyncio.subprocess.Process) -> None:
        """Wait a bounded time for a signalled process to exit."""
        try:
            await asyncio.wait_for(proc.wait(), timeout=_REAP_GRACE_S)
        except asyncio.TimeoutError:
            log.warning("recognizer.reap_timeout", pid=proc.pid, grace_s=_REAP_GRACE_S)

    async def cancel(self) -> None:
        """SIGTERM the running process group, if any. Safe to call at any time."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        self._cancelled = True
        signal_process_group(proc, kill=False)
