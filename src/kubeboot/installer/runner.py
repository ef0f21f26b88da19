"""Subprocess helpers shared by the tool wrappers."""

import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional

from kubeboot.errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600

# Signature every tool wrapper accepts, so tests can swap in a fake
Runner = Callable[..., subprocess.CompletedProcess]


def run_command(
    cmd: List[str],
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a command and return the result.

    Raises CommandError when ``check`` is set and the command exits non-zero,
    and always when it outlives ``timeout``.
    """
    logger.debug("Running: %s", " ".join(cmd))
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd, cwd=cwd, capture_output=True, text=True, check=False, timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        logger.error("Command timed out after %ss: %s", timeout, " ".join(cmd))
        raise CommandError(cmd, stderr=_text(e.stderr)) from e
    except FileNotFoundError as e:
        raise CommandError(cmd, returncode=127, stderr=str(e)) from e

    logger.debug(
        "Finished in %.2fs with code %s: %s",
        time.monotonic() - start,
        result.returncode,
        " ".join(cmd),
    )

    if check and result.returncode != 0:
        logger.error("Command failed with code %s", result.returncode)
        logger.error("stderr: %s", result.stderr.strip())
        raise CommandError(cmd, returncode=result.returncode, stderr=result.stderr)

    return result


def spawn_detached(cmd: List[str]) -> int:
    """Start a process in its own session with output discarded, return its pid"""
    logger.debug("Spawning: %s", " ".join(cmd))
    process = subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    return process.pid


def find_executable(name: str, path: Optional[str] = None) -> Optional[str]:
    """Look a binary up on the execution path"""
    return shutil.which(name, path=path)


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
