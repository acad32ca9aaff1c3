"""
LaTeX → PDF compilation by shelling out to a TeX engine.

Provides:
- run_command: asyncio subprocess wrapper with timeout and output cap
- LatexCompiler: multi-pass compile with MiKTeX update-warning retry
- configure_miktex: one-off startup tweak silencing MiKTeX update checks on Windows
- latex_compiler / get_compiler: shared instance and its FastAPI dependency
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

import aiofiles

from app.config import settings
from app.utils.helpers import is_miktex_update_warning, truncate_text

logger = logging.getLogger(__name__)


class CompilationError(Exception):
    """The service could not run a compilation (as opposed to a broken document)."""


# ---------------------------------------------------------------------------
# Process execution
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ProcessResult:
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


Runner = Callable[..., Awaitable[ProcessResult]]


READ_CHUNK_BYTES = 64 * 1024


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def run_command(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    max_buffer: int = 10 * 1024 * 1024,
) -> ProcessResult:
    """
    Run *args* without a shell and capture its output.

    stdout and stderr are read as they are produced against a shared
    *max_buffer* byte budget; the process is killed as soon as the budget is
    exceeded or *timeout* elapses, and whatever was captured up to then is
    kept.

    Process-level problems (missing binary, timeout, oversized output,
    non-zero exit) are reported through ``ProcessResult.error`` rather than
    raised, so callers can inspect whatever output was produced.
    """
    command_line = " ".join(str(a) for a in args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *[str(a) for a in args],
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return ProcessResult(returncode=127, error=f"{args[0]}: command not found")
    except PermissionError as exc:
        return ProcessResult(returncode=126, error=f"{args[0]}: {exc}")

    captured: Dict[str, List[bytes]] = {"stdout": [], "stderr": []}
    total = 0
    overflowed: Optional[str] = None

    async def pump(stream: asyncio.StreamReader, name: str) -> None:
        nonlocal total, overflowed
        while True:
            data = await stream.read(READ_CHUNK_BYTES)
            if not data or overflowed:
                return
            room = max_buffer - total
            if len(data) > room:
                captured[name].append(data[:room])
                total = max_buffer
                overflowed = name
                logger.debug("%s exceeded %d bytes of %s, killing it", args[0], max_buffer, name)
                _kill(proc)
                return
            captured[name].append(data)
            total += len(data)

    try:
        await asyncio.wait_for(
            asyncio.gather(pump(proc.stdout, "stdout"), pump(proc.stderr, "stderr"), proc.wait()),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        return ProcessResult(
            returncode=proc.returncode,
            stdout=_decode(captured["stdout"]),
            stderr=_decode(captured["stderr"]),
            error=f"Command timed out after {timeout:g}s",
            timed_out=True,
        )

    result = ProcessResult(
        returncode=proc.returncode,
        stdout=_decode(captured["stdout"]),
        stderr=_decode(captured["stderr"]),
    )
    if overflowed:
        result.error = f"{overflowed} maxBuffer length exceeded"
    elif proc.returncode != 0:
        result.error = f"Command failed with exit code {proc.returncode}: {command_line}"
    return result


def build_engine_command(
    engine: str,
    work_dir: Union[str, Path],
    platform: str = sys.platform,
    tex_filename: str = "main.tex",
) -> List[str]:
    """Command line for one non-interactive engine pass with shell escape disabled."""
    command = [engine]
    if platform == "win32":
        # Stop MiKTeX from prompting to install missing packages
        command.append("--disable-installer")
    command += [
        "-interaction=nonstopmode",
        "-output-directory",
        str(work_dir),
        "-no-shell-escape",
        tex_filename,
    ]
    return command


def engine_environment() -> Dict[str, str]:
    """Current environment with MiKTeX installer and update prompts disabled."""
    env = dict(os.environ)
    env["MIKTEX_DISABLE_INSTALLER"] = "1"
    env["MIKTEX_DISABLE_UPDATE_CHECK"] = "1"
    return env


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class CompilationOutcome:
    success: bool
    pdf_bytes: Optional[bytes] = None
    log: str = ""
    error: Optional[str] = None


@dataclasses.dataclass
class EngineStatus:
    engine: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None


async def _read_bytes(path: Path) -> Optional[bytes]:
    if not path.is_file():
        return None
    async with aiofiles.open(path, "rb") as fh:
        return await fh.read()


async def _read_text(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as fh:
        return await fh.read()


class LatexCompiler:
    """
    Compiles a single LaTeX source string into a PDF inside a work directory.

    * Runs the engine ``passes`` times so references and the TOC settle
    * A failing pass is forgiven when a PDF was still written
    * A failing first pass with no PDF stops the run
    * MiKTeX's "you have not checked for updates" notice can abort a run
      before anything is typeset; that case gets exactly one extra attempt
    * A semaphore caps how many compilations run at once
    """

    TEX_FILENAME = "main.tex"
    PDF_FILENAME = "main.pdf"
    LOG_FILENAME = "main.log"
    RETRY_SEPARATOR = "\n--- Retry attempt ---\n"

    def __init__(
        self,
        engine: Optional[str] = None,
        passes: Optional[int] = None,
        timeout: Optional[float] = None,
        max_buffer: Optional[int] = None,
        health_timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        runner: Optional[Runner] = None,
        platform: str = sys.platform,
    ) -> None:
        self.engine = engine or settings.LATEX_ENGINE
        self.passes = passes if passes is not None else settings.LATEX_PASSES
        self.timeout = timeout if timeout is not None else settings.LATEX_TIMEOUT_SECONDS
        self.max_buffer = max_buffer if max_buffer is not None else settings.LATEX_MAX_BUFFER_BYTES
        self.health_timeout = (
            health_timeout if health_timeout is not None else settings.LATEX_HEALTH_TIMEOUT_SECONDS
        )
        self.runner: Runner = runner or run_command
        self.platform = platform
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.MAX_CONCURRENT_COMPILES)

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    async def compile(self, source: str, work_dir: Union[str, Path]) -> CompilationOutcome:
        """
        Typeset *source* in *work_dir* and return the PDF and log.

        Raises CompilationError only when the work directory itself is
        unusable; every engine-side failure is reported in the outcome.
        """
        async with self._semaphore:
            return await self._compile(source, Path(work_dir))

    async def check_available(self) -> EngineStatus:
        """Probe the engine with ``--version``."""
        result = await self.runner(
            [self.engine, "--version"],
            timeout=self.health_timeout,
            max_buffer=self.max_buffer,
        )
        if result.failed:
            logger.warning("Engine probe failed: %s", result.error)
            return EngineStatus(engine=self.engine, available=False, error=result.error)

        version = next((line.strip() for line in result.stdout.splitlines() if line.strip()), None)
        return EngineStatus(engine=self.engine, available=True, version=version)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_engine(self, command: List[str], work_dir: Path) -> ProcessResult:
        return await self.runner(
            command,
            cwd=work_dir,
            env=engine_environment(),
            timeout=self.timeout,
            max_buffer=self.max_buffer,
        )

    async def _compile(self, source: str, work_dir: Path) -> CompilationOutcome:
        tex_path = work_dir / self.TEX_FILENAME
        pdf_path = work_dir / self.PDF_FILENAME
        log_path = work_dir / self.LOG_FILENAME

        try:
            async with aiofiles.open(tex_path, "w", encoding="utf-8") as fh:
                await fh.write(source)
        except OSError as exc:
            raise CompilationError(f"Could not write LaTeX source: {exc}") from exc

        command = build_engine_command(self.engine, work_dir, self.platform, self.TEX_FILENAME)
        output_parts: List[str] = []
        last_error: Optional[str] = None

        for pass_index in range(self.passes):
            result = await self._run_engine(command, work_dir)
            output_parts.append(result.output)
            if not result.failed:
                continue

            last_error = result.error
            if pdf_path.is_file():
                last_error = None
                continue
            logger.debug(
                "Pass %d/%d produced no PDF: %s", pass_index + 1, self.passes, result.error
            )
            if pass_index == 0:
                break

        pdf_bytes = await _read_bytes(pdf_path)
        log = await _read_text(log_path)
        if log is None:
            log = "".join(output_parts)

        if is_miktex_update_warning(log):
            if pdf_bytes is not None:
                last_error = None
            elif last_error:
                logger.info("MiKTeX update warning detected, retrying compilation in %s", work_dir.name)
                result = await self._run_engine(command, work_dir)
                output_parts.append(self.RETRY_SEPARATOR + result.output)

                pdf_bytes = await _read_bytes(pdf_path)
                if pdf_bytes is not None:
                    last_error = None
                file_log = await _read_text(log_path)
                log = file_log if file_log is not None else "".join(output_parts)

        if pdf_bytes is None:
            logger.info(
                "Compilation in %s failed: %s",
                work_dir.name,
                truncate_text(last_error or "no PDF produced"),
            )

        return CompilationOutcome(
            success=pdf_bytes is not None,
            pdf_bytes=pdf_bytes,
            log=log,
            error=last_error if pdf_bytes is None else None,
        )


# ---------------------------------------------------------------------------
# MiKTeX startup configuration
# ---------------------------------------------------------------------------

MIKTEX_CONFIG_VALUES = (
    "[MPM]AutoInstall=1",
    "[Update]CheckForUpdates=0",
    "[Update]LastCheck=9999999999",
)


async def configure_miktex(
    runner: Runner = run_command,
    platform: str = sys.platform,
    timeout: Optional[float] = None,
) -> bool:
    """
    Turn off MiKTeX update checks so they cannot block compilations.

    Only meaningful on Windows; returns False elsewhere. Individual command
    failures are logged and otherwise ignored since the environment variables
    set for each engine run cover the same ground.
    """
    if platform != "win32":
        return False

    timeout = timeout if timeout is not None else settings.LATEX_HEALTH_TIMEOUT_SECONDS
    for value in MIKTEX_CONFIG_VALUES:
        result = await runner(
            ["initexmf", f"--set-config-value={value}"],
            timeout=timeout,
            max_buffer=1024 * 1024,
        )
        if result.failed:
            logger.warning("Could not set MiKTeX option %s: %s", value, result.error)

    logger.info("MiKTeX update checks disabled")
    return True


# Module-level singleton instance
latex_compiler = LatexCompiler()


def get_compiler() -> LatexCompiler:
    """FastAPI dependency returning the shared compiler."""
    return latex_compiler
