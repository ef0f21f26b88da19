"""Exceptions raised while bootstrapping the local environment"""

from typing import List, Optional, Union


class KubebootError(Exception):
    """Base exception for kubeboot errors"""

    pass


class ConfigError(KubebootError):
    """Invalid configuration value"""

    pass


class PrerequisiteError(KubebootError):
    """Something the run depends on is not installed or not present"""

    pass


class DownloadError(KubebootError):
    """Fetching a release artifact failed"""

    pass


class CommandError(KubebootError):
    """An external command exited non-zero or timed out"""

    def __init__(
        self,
        command: Union[List[str], str],
        returncode: Optional[int] = None,
        stderr: str = "",
        message: str = "",
    ):
        self.command = command if isinstance(command, str) else " ".join(command)
        self.returncode = returncode
        self.stderr = stderr
        if not message:
            if returncode is None:
                message = f"Command timed out: {self.command}"
            else:
                message = f"Command failed with code {returncode}: {self.command}"
        super().__init__(message)


class WaitTimeoutError(CommandError):
    """A readiness condition did not become true in time"""

    def __init__(self, condition: str, command, stderr: str = ""):
        self.condition = condition
        super().__init__(
            command,
            returncode=None,
            stderr=stderr,
            message=f"Timed out waiting for {condition}",
        )


class StepError(KubebootError):
    """A bootstrap step failed; wraps the underlying error"""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"{step}: {cause}")

    @property
    def command(self) -> Optional[str]:
        return getattr(self.cause, "command", None)
