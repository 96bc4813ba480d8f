"""
Command and response errors.

Every failure the usage fetch can produce is a CommandError subclass, so the
poll loop can classify it without string matching.
"""


class CommandError(Exception):
    """Base class for failures while fetching usage data."""


class CommandNotFound(CommandError):
    """The executable could not be resolved to a file."""
    def __init__(self, command: str):
        super().__init__(
            f"Command not found: {command}. "
            "Please ensure Node.js is installed and accessible."
        )
        self.command = command


class ExecutionFailed(CommandError):
    """The process exited with a non-zero status."""
    def __init__(self, exit_code: int):
        if exit_code == 126:
            message = (
                "Permission denied (exit code 126). "
                "Check app permissions and Node.js installation."
            )
        elif exit_code == 127:
            message = (
                "Command not found (exit code 127). "
                "Please install Node.js or check the path."
            )
        else:
            message = f"Command failed with exit code: {exit_code}"
        super().__init__(message)
        self.exit_code = exit_code


class PermissionDenied(CommandError):
    """The operating system refused to run the executable."""
    def __init__(self, command: str):
        super().__init__(
            f"Permission denied executing: {command}. "
            "Check file permissions and security settings."
        )
        self.command = command


class NoOutput(CommandError):
    """The process succeeded but wrote nothing to stdout."""
    def __init__(self):
        super().__init__("No output received from command")


class Timeout(CommandError):
    """The process did not exit before the timeout and was killed."""
    def __init__(self, seconds: float):
        super().__init__(f"Command execution timed out after {seconds:g}s")
        self.seconds = seconds


class EmptyResponse(CommandError):
    """The command output was empty or whitespace only."""
    def __init__(self):
        super().__init__("Empty JSON response from ccusage")


class MalformedResponse(CommandError):
    """The command output is not complete, parseable JSON."""
    def __init__(self, detail: str):
        super().__init__(f"Malformed JSON response: {detail}")
        self.detail = detail


class ExecutionInProgress(CommandError):
    """A usage fetch is already running."""
    def __init__(self):
        super().__init__("A ccusage fetch is already in progress")
