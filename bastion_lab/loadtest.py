"""Load simulation: many concurrent SSH sessions to the prod server.

Every session hops through the bastion, runs a command and then keeps the
connection open for a while, so both hosts carry the full session count at
the same time.
"""

import asyncio
import contextlib
import shlex
import shutil
import statistics
import time
from dataclasses import dataclass, field

import structlog

from .exceptions import ToolNotFoundError
from .ssh import SshTarget

logger = structlog.get_logger()

DEFAULT_SESSIONS = 30
DEFAULT_HOLD_SECONDS = 30


@dataclass
class SessionResult:
    index: int
    returncode: int
    duration: float
    stdout: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None


@dataclass
class LoadTestReport:
    sessions: list[SessionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.sessions)

    @property
    def succeeded(self) -> int:
        return sum(1 for s in self.sessions if s.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def durations(self) -> list[float]:
        return [s.duration for s in self.sessions]

    @property
    def p50(self) -> float:
        return statistics.median(self.durations) if self.sessions else 0.0

    @property
    def max_duration(self) -> float:
        return max(self.durations, default=0.0)

    def summary(self) -> dict[str, float | int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "p50_seconds": round(self.p50, 3),
            "max_seconds": round(self.max_duration, 3),
        }


def session_command(command: str, hold_seconds: int) -> str:
    """Remote command for one session: run ``command``, then hold the connection."""
    if hold_seconds <= 0:
        return command
    return f"{command} && sleep {shlex.quote(str(hold_seconds))}"


async def _run_session(
    index: int,
    argv: list[str],
    timeout: float,
    semaphore: asyncio.Semaphore,
) -> SessionResult:
    async with semaphore:
        start = time.monotonic()
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            # The child may exit between the timeout and the kill
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            duration = time.monotonic() - start
            logger.warning("Session timed out", session=index, timeout=timeout)
            return SessionResult(
                index=index, returncode=-1, duration=duration, error=f"timed out after {timeout}s"
            )

        duration = time.monotonic() - start
        returncode = process.returncode if process.returncode is not None else -1
        error = None
        if returncode != 0:
            error = stderr.decode(errors="replace").strip() or f"exit code {returncode}"
            logger.warning("Session failed", session=index, returncode=returncode, error=error)
        else:
            logger.debug("Session finished", session=index, duration=round(duration, 3))

        return SessionResult(
            index=index,
            returncode=returncode,
            duration=duration,
            stdout=stdout.decode(errors="replace").strip(),
            error=error,
        )


async def run_load_test_async(
    target: SshTarget,
    sessions: int = DEFAULT_SESSIONS,
    hold_seconds: int = DEFAULT_HOLD_SECONDS,
    command: str = "uptime",
    timeout: float | None = None,
    concurrency: int | None = None,
) -> LoadTestReport:
    """Open ``sessions`` SSH sessions to the prod server concurrently."""
    if sessions < 1:
        raise ValueError("sessions must be at least 1")

    # Default timeout leaves room for connection setup on both hops
    timeout = timeout if timeout is not None else hold_seconds + 60
    semaphore = asyncio.Semaphore(concurrency or sessions)
    argv = target.prod_command(session_command(command, hold_seconds))
    if shutil.which(argv[0]) is None:
        raise ToolNotFoundError(argv[0])

    logger.info(
        "Starting load test",
        sessions=sessions,
        hold_seconds=hold_seconds,
        prod=target.prod_host,
        bastion=target.bastion_host,
    )

    results = await asyncio.gather(
        *(_run_session(i, argv, timeout, semaphore) for i in range(sessions))
    )
    report = LoadTestReport(sessions=sorted(results, key=lambda r: r.index))

    logger.info("Load test complete", **report.summary())
    return report


def run_load_test(target: SshTarget, **kwargs: object) -> LoadTestReport:
    """Synchronous wrapper around :func:`run_load_test_async`."""
    return asyncio.run(run_load_test_async(target, **kwargs))  # type: ignore[arg-type]
