"""Error taxonomy for the scheduler end-to-end harness.

Every fatal condition derives from E2EError so the orchestrator can turn it
into a failed verdict naming the step. A poll timeout is not an error: it is
reported as a failed PollOutcome.
"""


class E2EError(RuntimeError):
    """Base class for fatal harness errors."""


class ConfigError(E2EError):
    """Invalid run configuration."""


class PreflightError(E2EError):
    """A required tool is missing from PATH."""


class CommandError(E2EError):
    """An external command exited non-zero, was not found, or timed out."""

    def __init__(self, cmd, returncode, detail=""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.detail = detail
        message = f"{' '.join(self.cmd)} failed (rc={returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class BuildError(E2EError):
    """The scheduler image could not be built."""


class ProvisionError(E2EError):
    """The test fixture could not be provisioned."""


class DestroyError(E2EError):
    """The test fixture could not be destroyed. Only ever reported as a warning."""


class CredentialError(E2EError):
    """No usable AWS credentials could be resolved."""


class InvocationError(E2EError):
    """The scheduler under test exited abnormally."""
