"""
Linux command execution.

All external tools are invoked through :class:`CommandRunner` so that every
call is logged the same way and tests can substitute a recording runner.
"""

from __future__ import annotations

import subprocess
import time
from collections.abc import Sequence

from diskwright.core.logging import get_logger
from diskwright.platform.base import CommandResult

logger = get_logger(__name__)


class CommandRunner:
    """Runs system commands and captures their output."""

    def run(
        self,
        command: list[str],
        timeout: int | None = 300,
        check: bool = True,
        capture_output: bool = True,
    ) -> CommandResult:
        """Run a system command."""
        logger.debug("Running command", command=command)
        start_time = time.time()

        try:
            result = subprocess.run(
                command,
                capture_output=capture_output,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                command=command,
                duration_seconds=float(timeout or 0),
            )
        except OSError as e:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=str(e),
                command=command,
                duration_seconds=time.time() - start_time,
            )

        cmd_result = CommandResult(
            returncode=result.returncode,
            stdout=result.stdout if capture_output else "",
            stderr=result.stderr if capture_output else "",
            command=command,
            duration_seconds=time.time() - start_time,
        )

        if check and result.returncode != 0:
            logger.warning(
                "Command failed",
                command=command,
                returncode=result.returncode,
                stderr=result.stderr[:500] if result.stderr else "",
            )

        return cmd_result

    def run_pipeline(
        self,
        commands: Sequence[list[str]],
        timeout: int | None = None,
    ) -> CommandResult:
        """Run ``commands`` connected by pipes. Fails if any stage fails."""
        logger.debug("Running pipeline", commands=list(commands))
        start_time = time.time()
        display = " | ".join(" ".join(c) for c in commands)

        processes: list[subprocess.Popen[bytes]] = []
        try:
            previous_stdout = None
            for index, command in enumerate(commands):
                last = index == len(commands) - 1
                proc = subprocess.Popen(
                    command,
                    stdin=previous_stdout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
                if previous_stdout is not None:
                    previous_stdout.close()
                previous_stdout = None if last else proc.stdout
                processes.append(proc)

            _, last_stderr = processes[-1].communicate(timeout=timeout)
            returncodes = [proc.wait(timeout=timeout) for proc in processes]
        except subprocess.TimeoutExpired:
            for proc in processes:
                proc.kill()
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Pipeline timed out after {timeout}s",
                command=display,
                duration_seconds=float(timeout or 0),
            )
        except OSError as e:
            for proc in processes:
                proc.kill()
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=str(e),
                command=display,
                duration_seconds=time.time() - start_time,
            )

        stderr = "".join(
            proc.stderr.read().decode(errors="replace")
            for proc in processes[:-1]
            if proc.stderr
        ) + last_stderr.decode(errors="replace")
        returncode = next((rc for rc in returncodes if rc != 0), 0)
        if returncode != 0:
            logger.warning(
                "Pipeline failed",
                command=display,
                returncodes=returncodes,
                stderr=stderr[:500],
            )
        return CommandResult(
            returncode=returncode,
            stdout="",
            stderr=stderr,
            command=display,
            duration_seconds=time.time() - start_time,
        )
