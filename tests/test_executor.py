from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path

import allure
import pytest
from conftest import make_item

from research_queue.scheduler.executor import (
    TIMEOUT_EXIT_CODE,
    CliTaskExecutor,
    build_run_args,
    detect_permission_denial,
)

pytestmark = [
    allure.epic("Research Queue"),
    allure.feature("Task Execution"),
]


def _script_command(tmp_path: Path, body: str) -> str:
    script = tmp_path / "runner.py"
    script.write_text("import json, sys, time\n" + body, "utf-8")
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


def _executor(tmp_path: Path, command: str, **overrides: object) -> CliTaskExecutor:
    values: dict[str, object] = {
        "command": command,
        "cwd": tmp_path,
        "logs_dir": tmp_path / "logs",
        "timeout_seconds": 30,
        "poll_interval_seconds": 0.02,
    }
    values.update(overrides)
    return CliTaskExecutor(**values)  # type: ignore[arg-type]


def test_build_run_args_renders_headless_invocation() -> None:
    assert build_run_args(
        command="claude",
        model="opus",
        allowed_tools=["Read", "Bash(git add:*)"],
    ) == [
        "claude",
        "-p",
        "--model",
        "opus",
        "--output-format",
        "json",
        "--allowedTools",
        "Read",
        "Bash(git add:*)",
    ]


def test_build_run_args_rejects_empty_command() -> None:
    with pytest.raises(ValueError, match="empty"):
        build_run_args(command="  ", model="sonnet", allowed_tools=[])


def test_run_feeds_instructions_on_stdin_and_captures_output(tmp_path: Path) -> None:
    command = _script_command(
        tmp_path,
        "print(json.dumps({'argv': sys.argv[1:], 'stdin': sys.stdin.read()}))\n",
    )
    item = make_item(model="haiku")

    result = _executor(tmp_path, command).run(
        item,
        instructions="Research topic: demo",
        allowed_tools=["Read", "Write"],
        attempt=1,
    )

    assert result.success is True
    assert result.exit_code == 0
    assert result.timed_out is False
    assert result.error is None
    payload = json.loads(result.stdout)
    assert payload["stdin"] == "Research topic: demo"
    assert payload["argv"] == [
        "-p",
        "--model",
        "haiku",
        "--output-format",
        "json",
        "--allowedTools",
        "Read",
        "Write",
    ]
    assert result.stdout_path == tmp_path / "logs" / f"{item.label}-attempt1.stdout.log"
    assert result.stdout_path.read_text("utf-8") == result.stdout


def test_run_reports_nonzero_exit_and_permission_denial_in_stderr(tmp_path: Path) -> None:
    command = _script_command(
        tmp_path,
        "sys.stderr.write('Permission denied for tool WebFetch\\n')\nsys.exit(3)\n",
    )

    result = _executor(tmp_path, command).run(
        make_item(),
        instructions="x",
        allowed_tools=[],
        attempt=2,
    )

    assert result.success is False
    assert result.exit_code == 3
    assert result.error == "Task runner exited with code 3"
    assert result.permission_warning is not None
    assert "Permission denied" in result.stderr


def test_run_ignores_permission_words_in_stdout(tmp_path: Path) -> None:
    command = _script_command(tmp_path, "print('Findings: permission models compared')\n")

    result = _executor(tmp_path, command).run(
        make_item(),
        instructions="x",
        allowed_tools=[],
        attempt=1,
    )

    assert result.success is True
    assert result.permission_warning is None


def test_run_times_out_and_terminates_runner(tmp_path: Path) -> None:
    command = _script_command(tmp_path, "time.sleep(30)\n")

    result = _executor(tmp_path, command, timeout_seconds=1).run(
        make_item(),
        instructions="x",
        allowed_tools=[],
        attempt=1,
    )

    assert result.success is False
    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.error == "Task runner timed out after 1s"
    assert result.duration_ms < 10_000


def test_run_timeout_holds_when_runner_ignores_large_instructions(tmp_path: Path) -> None:
    command = _script_command(tmp_path, "time.sleep(30)\n")
    instructions = "Description: " + "long free-text context " * 15_000
    item = make_item()

    result = _executor(tmp_path, command, timeout_seconds=1).run(
        item,
        instructions=instructions,
        allowed_tools=[],
        attempt=1,
    )

    assert result.timed_out is True
    assert result.success is False
    assert result.duration_ms < 10_000
    prompt_path = tmp_path / "logs" / f"{item.label}-attempt1.prompt.txt"
    assert prompt_path.read_text("utf-8") == instructions


def test_run_missing_command_is_a_diagnostic_not_an_exception(tmp_path: Path) -> None:
    result = _executor(tmp_path, "definitely-not-a-research-runner-7f3a").run(
        make_item(),
        instructions="x",
        allowed_tools=[],
        attempt=1,
    )

    assert result.success is False
    assert result.exit_code is None
    assert result.error is not None
    assert result.error.startswith("Task runner command not found")


def test_run_bounds_captured_output(tmp_path: Path) -> None:
    command = _script_command(tmp_path, "sys.stdout.write('a' * 5000)\n")

    result = _executor(tmp_path, command, max_output_chars=100).run(
        make_item(),
        instructions="x",
        allowed_tools=[],
        attempt=1,
    )

    assert result.stdout == "a" * 100


@pytest.mark.parametrize(
    ("stderr", "expected"),
    [
        ("Tool use not allowed: WebFetch", "not allowed"),
        ("401 Unauthorized", "Unauthorized"),
        ("all good", None),
    ],
)
def test_detect_permission_denial(stderr: str, expected: str | None) -> None:
    assert detect_permission_denial(stderr) == expected
