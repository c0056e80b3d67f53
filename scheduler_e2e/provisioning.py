"""Terraform-backed test fixture and the guard that always tears it down.

The fixture definition itself lives in a Terraform working directory that
must expose four outputs: instance_id, region, tag_key and tag_value.
Destroying it is idempotent: terraform destroy on an empty state is a no-op.
"""
import os
from collections import namedtuple

from scheduler_e2e import commands
from scheduler_e2e.errors import CommandError, DestroyError, ProvisionError

Fixture = namedtuple("Fixture", ["instance_id", "region", "tag_key", "tag_value"])

FIXTURE_OUTPUTS = Fixture._fields


class TerraformBackend:
    """Provision and destroy the fixture with the terraform CLI."""

    def __init__(self, terraform_dir, region=None, environ=None):
        self.terraform_dir = terraform_dir
        self.region = region
        self.environ = environ

    def _env(self):
        env = dict(os.environ if self.environ is None else self.environ)
        if self.region:
            env["TF_VAR_region"] = self.region
        return env

    def _terraform(self, *args, **kwargs):
        return commands.terraform(self.terraform_dir, *args, env=self._env(), **kwargs)

    def output(self, name):
        """Read a single raw terraform output."""
        _, stdout, _ = self._terraform("output", "-raw", name, echo=False)
        return stdout

    def provision(self):
        """Create the fixture. Returns a Fixture."""
        try:
            self._terraform("init", "-input=false", capture=False)
            self._terraform("apply", "-auto-approve", "-input=false", capture=False)
            outputs = {name: self.output(name) for name in FIXTURE_OUTPUTS}
        except CommandError as e:
            raise ProvisionError(f"Terraform provisioning failed: {e}") from e

        missing = [name for name, value in outputs.items() if not value]
        if missing:
            raise ProvisionError(
                f"Terraform outputs missing or empty: {', '.join(missing)}")

        fixture = Fixture(**outputs)
        print(f"\n  Instance ID : {fixture.instance_id}")
        print(f"  Region      : {fixture.region}")
        print(f"  Tag         : {fixture.tag_key}={fixture.tag_value}")
        return fixture

    def destroy(self):
        """Destroy whatever the fixture created. Safe when nothing exists."""
        try:
            self._terraform("destroy", "-auto-approve", "-input=false")
        except CommandError as e:
            raise DestroyError(f"Terraform destroy failed: {e}") from e


class FixtureGuard:
    """Owns the fixture for one run and destroys it exactly once.

    Enter the guard before provisioning so a partially created fixture is
    still torn down. release() runs on every way out of the with block,
    including KeyboardInterrupt and SystemExit. A failing destroy is printed
    as a warning and never replaces the run's verdict.
    """

    def __init__(self, backend):
        self.backend = backend
        self.fixture = None
        self.released = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def provision(self):
        self.fixture = self.backend.provision()
        return self.fixture

    def release(self):
        if self.released:
            return
        self.released = True
        if self.fixture is not None:
            print(f"\n--- Cleanup: terraform destroy (instance {self.fixture.instance_id}) ---")
        else:
            print("\n--- Cleanup: terraform destroy (no fixture outputs read) ---")
        try:
            self.backend.destroy()
        except Exception as e:
            print(f"  Warning: cleanup failed: {e}")
            return
        print("  Cleanup complete")
