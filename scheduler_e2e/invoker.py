"""Build and run the scheduler under test as a Docker container."""
import os
import uuid
from enum import Enum

from scheduler_e2e import commands
from scheduler_e2e.credentials import ACCESS_KEY_VAR, SECRET_KEY_VAR, SESSION_TOKEN_VAR
from scheduler_e2e.errors import BuildError, CommandError, InvocationError

# Names only: docker copies the values from the child process environment.
CREDENTIAL_VARS = (ACCESS_KEY_VAR, SECRET_KEY_VAR, SESSION_TOKEN_VAR)


class ScheduleAction(Enum):
    STOP = "stop"
    START = "start"

    def __str__(self):
        return self.value


class SchedulerInvoker:
    """Runs one scheduler action against the fixture and waits for it to exit."""

    def __init__(self, image_name, log_level="info", resource_flag="EC2_SCHEDULE",
                 timeout=None, environ=None):
        self.image_name = image_name
        self.log_level = log_level
        self.resource_flag = resource_flag
        self.timeout = timeout
        self.environ = environ

    def build(self, context_dir):
        """Build the scheduler image from its repository root."""
        try:
            commands.docker("build", "-t", self.image_name, context_dir,
                            capture=False, env=self._base_env())
        except CommandError as e:
            raise BuildError(f"Docker build failed: {e}") from e

    def scheduler_env(self, action, fixture):
        """Configuration the scheduler reads from its environment."""
        return {
            "SCHEDULE_ACTION": ScheduleAction(action).value,
            "AWS_REGIONS": fixture.region,
            "TAG_KEY": fixture.tag_key,
            "TAG_VALUE": fixture.tag_value,
            self.resource_flag: "true",
            "LOG_LEVEL": self.log_level,
        }

    def command(self, action, fixture, name):
        cmd = ["docker", "run", "--rm", "--name", name]
        for var in CREDENTIAL_VARS:
            cmd += ["-e", var]
        for var, value in self.scheduler_env(action, fixture).items():
            cmd += ["-e", f"{var}={value}"]
        cmd.append(self.image_name)
        return cmd

    def invoke(self, action, fixture, credentials):
        """Run the scheduler to completion. Raises InvocationError on failure."""
        action = ScheduleAction(action)
        print(f"Running scheduler with SCHEDULE_ACTION={action}")
        env = self._base_env()
        env.update(credentials.as_env())
        name = f"scheduler-e2e-{action}-{uuid.uuid4().hex[:8]}"
        try:
            commands.run(self.command(action, fixture, name), capture=False,
                         env=env, timeout=self.timeout,
                         on_abort=lambda: self.remove_container(name))
        except CommandError as e:
            message = f"Scheduler '{action}' run exited abnormally (rc={e.returncode})"
            if e.detail:
                message += f": {e.detail}"
            raise InvocationError(message) from e

    def remove_container(self, name):
        """Force-remove a scheduler container left behind by an aborted run."""
        print(f"  Removing container {name}")
        commands.docker("rm", "-f", name, check=False, timeout=60,
                        env=self._base_env())

    def _base_env(self):
        return dict(os.environ if self.environ is None else self.environ)
