"""Tests for the process runner and the multi-pass compiler."""
import asyncio
import sys
import time
from pathlib import Path

import pytest

from app.services.latex_compiler import (
    LatexCompiler,
    ProcessResult,
    build_engine_command,
    configure_miktex,
    engine_environment,
    run_command,
)
from tests.fakes import ENGINE_FAILED, FAKE_PDF, MIKTEX_NOTICE, FakeEngine, fail, produce_pdf

SOURCE = "\\documentclass{article}\\begin{document}Hello\\end{document}"


def _compiler(engine: FakeEngine, **kwargs) -> LatexCompiler:
    kwargs.setdefault("passes", 2)
    kwargs.setdefault("platform", "linux")
    return LatexCompiler(engine="pdflatex", timeout=5, max_buffer=1024 * 1024, runner=engine, **kwargs)


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------

def test_engine_command_linux(tmp_path: Path):
    cmd = build_engine_command("pdflatex", tmp_path, platform="linux")
    assert cmd == [
        "pdflatex",
        "-interaction=nonstopmode",
        "-output-directory",
        str(tmp_path),
        "-no-shell-escape",
        "main.tex",
    ]


def test_engine_command_windows_disables_installer(tmp_path: Path):
    cmd = build_engine_command("pdflatex", tmp_path, platform="win32")
    assert cmd[:2] == ["pdflatex", "--disable-installer"]
    assert cmd[-1] == "main.tex"


def test_engine_environment_silences_miktex():
    env = engine_environment()
    assert env["MIKTEX_DISABLE_INSTALLER"] == "1"
    assert env["MIKTEX_DISABLE_UPDATE_CHECK"] == "1"
    assert "PATH" in env


# ---------------------------------------------------------------------------
# Compilation flow
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_compile_success_runs_all_passes(tmp_path: Path):
    engine = FakeEngine()
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is True
    assert outcome.pdf_bytes == FAKE_PDF
    assert outcome.error is None
    assert "Output written on main.pdf" in outcome.log
    assert len(engine.engine_calls) == 2
    assert engine.sources[0] == SOURCE
    assert (tmp_path / "main.tex").read_text(encoding="utf-8") == SOURCE


@pytest.mark.asyncio
async def test_first_pass_failure_without_pdf_stops(tmp_path: Path):
    engine = FakeEngine(steps=[fail(log="! LaTeX Error: Missing \\begin{document}.\n")])
    outcome = await _compiler(engine).compile("garbage", tmp_path)

    assert outcome.success is False
    assert outcome.pdf_bytes is None
    assert outcome.error == ENGINE_FAILED
    assert "Missing \\begin{document}" in outcome.log
    assert len(engine.engine_calls) == 1


@pytest.mark.asyncio
async def test_failure_with_pdf_is_forgiven(tmp_path: Path):
    engine = FakeEngine(steps=[produce_pdf(returncode=1), produce_pdf(returncode=1)])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is True
    assert outcome.error is None
    assert len(engine.engine_calls) == 2


@pytest.mark.asyncio
async def test_process_output_used_when_no_log_file(tmp_path: Path):
    engine = FakeEngine(steps=[fail(stdout="pass one out\n", stderr="pass one err\n")])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.log == "pass one out\npass one err\n"


@pytest.mark.asyncio
async def test_log_file_takes_precedence_over_output(tmp_path: Path):
    engine = FakeEngine(steps=[
        produce_pdf(log="from the log file\n", stdout="from stdout\n"),
        produce_pdf(log="from the log file\n", stdout="from stdout\n"),
    ])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.log == "from the log file\n"


@pytest.mark.asyncio
async def test_miktex_warning_triggers_single_retry(tmp_path: Path):
    engine = FakeEngine(steps=[
        fail(stdout=MIKTEX_NOTICE),
        produce_pdf(log="Output written on main.pdf (1 page).\n"),
    ])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.log == "Output written on main.pdf (1 page).\n"
    # first pass fails and stops the loop, then exactly one retry
    assert len(engine.engine_calls) == 2


@pytest.mark.asyncio
async def test_miktex_retry_that_fails_keeps_error(tmp_path: Path):
    engine = FakeEngine(steps=[
        fail(stdout=MIKTEX_NOTICE),
        fail(stdout="still broken\n"),
    ])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is False
    assert outcome.error == ENGINE_FAILED
    assert LatexCompiler.RETRY_SEPARATOR in outcome.log
    assert outcome.log.endswith("still broken\n")
    assert len(engine.engine_calls) == 2


@pytest.mark.asyncio
async def test_miktex_warning_with_pdf_is_success(tmp_path: Path):
    engine = FakeEngine(steps=[
        produce_pdf(log=MIKTEX_NOTICE, returncode=1),
        produce_pdf(log=MIKTEX_NOTICE, returncode=1),
    ])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is True
    assert outcome.error is None
    assert len(engine.engine_calls) == 2


@pytest.mark.asyncio
async def test_no_retry_without_miktex_warning(tmp_path: Path):
    engine = FakeEngine(steps=[fail(stdout="! Emergency stop.\n")])
    outcome = await _compiler(engine).compile(SOURCE, tmp_path)

    assert outcome.success is False
    assert len(engine.engine_calls) == 1


@pytest.mark.asyncio
async def test_single_pass_configuration(tmp_path: Path):
    engine = FakeEngine()
    outcome = await _compiler(engine, passes=1).compile(SOURCE, tmp_path)

    assert outcome.success is True
    assert len(engine.engine_calls) == 1


@pytest.mark.asyncio
async def test_concurrent_compiles_are_serialised(tmp_path: Path):
    engine = FakeEngine(delay=0.02)
    compiler = _compiler(engine, passes=1, max_concurrent=1)
    dirs = [tmp_path / "a", tmp_path / "b", tmp_path / "c"]
    for d in dirs:
        d.mkdir()

    outcomes = await asyncio.gather(*(compiler.compile(SOURCE, d) for d in dirs))

    assert all(o.success for o in outcomes)
    assert engine.max_active == 1


@pytest.mark.asyncio
async def test_compile_into_missing_directory_raises(tmp_path: Path):
    from app.services.latex_compiler import CompilationError

    with pytest.raises(CompilationError):
        await _compiler(FakeEngine()).compile(SOURCE, tmp_path / "does-not-exist")


# ---------------------------------------------------------------------------
# Engine probe
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_check_available_reports_version():
    status = await _compiler(FakeEngine()).check_available()
    assert status.available is True
    assert status.engine == "pdflatex"
    assert status.version.startswith("pdfTeX 3.14")


@pytest.mark.asyncio
async def test_check_available_missing_engine():
    status = await _compiler(FakeEngine(available=False)).check_available()
    assert status.available is False
    assert status.error == "pdflatex: command not found"


# ---------------------------------------------------------------------------
# MiKTeX configuration
# ---------------------------------------------------------------------------

class _Recorder:
    def __init__(self, fail_all: bool = False):
        self.calls = []
        self.fail_all = fail_all

    async def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        if self.fail_all:
            return ProcessResult(returncode=127, error="initexmf: command not found")
        return ProcessResult(returncode=0)


@pytest.mark.asyncio
async def test_configure_miktex_skipped_off_windows():
    recorder = _Recorder()
    assert await configure_miktex(runner=recorder, platform="linux") is False
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_configure_miktex_on_windows():
    recorder = _Recorder()
    assert await configure_miktex(runner=recorder, platform="win32", timeout=1) is True
    assert recorder.calls == [
        ["initexmf", "--set-config-value=[MPM]AutoInstall=1"],
        ["initexmf", "--set-config-value=[Update]CheckForUpdates=0"],
        ["initexmf", "--set-config-value=[Update]LastCheck=9999999999"],
    ]


@pytest.mark.asyncio
async def test_configure_miktex_ignores_failures():
    recorder = _Recorder(fail_all=True)
    assert await configure_miktex(runner=recorder, platform="win32", timeout=1) is True
    assert len(recorder.calls) == 3


# ---------------------------------------------------------------------------
# run_command against real processes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_run_command_captures_output(tmp_path: Path):
    result = await run_command(
        [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        cwd=tmp_path,
        timeout=10,
    )
    assert result.failed is False
    assert result.returncode == 0
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


@pytest.mark.asyncio
async def test_run_command_nonzero_exit():
    result = await run_command([sys.executable, "-c", "import sys; sys.exit(3)"], timeout=10)
    assert result.failed is True
    assert result.returncode == 3
    assert result.error.startswith("Command failed with exit code 3")


@pytest.mark.asyncio
async def test_run_command_missing_binary():
    result = await run_command(["definitely-not-a-tex-engine-xyz", "--version"], timeout=5)
    assert result.failed is True
    assert result.returncode == 127
    assert result.error == "definitely-not-a-tex-engine-xyz: command not found"


@pytest.mark.asyncio
async def test_run_command_timeout_keeps_partial_output():
    result = await run_command(
        [sys.executable, "-c", "import time; print('partial', flush=True); time.sleep(10)"],
        timeout=0.5,
    )
    assert result.timed_out is True
    assert result.failed is True
    assert result.error == "Command timed out after 0.5s"
    assert result.stdout.strip() == "partial"


@pytest.mark.asyncio
async def test_run_command_output_cap():
    result = await run_command(
        [sys.executable, "-c", "print('x' * 5000)"],
        timeout=10,
        max_buffer=100,
    )
    assert result.failed is True
    assert result.error == "stdout maxBuffer length exceeded"
    assert len(result.stdout) == 100


@pytest.mark.asyncio
async def test_run_command_kills_process_once_output_cap_is_passed():
    script = "import sys, time; sys.stdout.write('x' * 1000); sys.stdout.flush(); time.sleep(10)"
    started = time.monotonic()
    result = await run_command([sys.executable, "-c", script], timeout=20, max_buffer=100)
    elapsed = time.monotonic() - started

    assert elapsed < 5
    assert result.timed_out is False
    assert result.error == "stdout maxBuffer length exceeded"
    assert result.stdout == "x" * 100


@pytest.mark.asyncio
async def test_run_command_output_cap_is_shared_with_stderr():
    script = "import sys; print('o' * 60, flush=True); sys.stderr.write('e' * 200)"
    result = await run_command([sys.executable, "-c", script], timeout=10, max_buffer=100)

    assert result.error == "stderr maxBuffer length exceeded"
    assert len(result.stdout) + len(result.stderr) == 100
