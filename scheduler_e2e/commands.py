"""Helpers for the external CLIs the harness drives (aws, terraform, docker).

Every command is echoed before it runs. Secrets are never passed on the
command line, only through the child process environment, so the echo is
always safe to print.
"""
import shutil
import subprocess

from scheduler_e2e.errors import CommandError, PreflightError

REQUIRED_TOOLS = ("terraform", "aws", "docker")

# Seconds a running command gets to finish after the harness is interrupted.
INTERRUPT_GRACE = 300
KILL_WAIT = 10


def run(cmd, check=True, capture=True, env=None, timeout=None, echo=True,
        grace=INTERRUPT_GRACE, on_abort=None):
    """Run an external command. Returns (returncode, stdout, stderr).

    With capture=False the command's output goes straight to the terminal
    and stdout/stderr come back empty. Raises CommandError when check is set
    and the command fails, and always when it cannot be started or times out.

    If the harness is interrupted (Ctrl-C, SIGTERM) while the command runs,
    the command is left to finish for up to `grace` seconds before it is
    killed, so terraform can still write its state, and the interrupt is
    re-raised. on_abort is called after a timeout or an interrupt.
    """
    cmd = list(cmd)
    if echo:
        print(f"  $ {' '.join(cmd)}")
    pipe = subprocess.PIPE if capture else None
    try:
        proc = subprocess.Popen(cmd, stdout=pipe, stderr=pipe, env=env,
                                text=True, encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise CommandError(cmd, 127, f"command not found: {cmd[0]}") from None
    except OSError as e:
        raise CommandError(cmd, 126, f"cannot execute {cmd[0]}: {e}") from None

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill(proc)
        _abort(on_abort)
        raise CommandError(cmd, None, f"timed out after {timeout}s") from None
    except BaseException:
        print(f"  Interrupted: waiting up to {grace}s for {cmd[0]} to finish...")
        try:
            _finish(proc, grace)
        finally:
            _abort(on_abort)
        raise

    stdout = (stdout or "").strip()
    stderr = (stderr or "").strip()
    if check and proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, stderr or stdout)
    return proc.returncode, stdout, stderr


def _finish(proc, grace):
    try:
        proc.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        print(f"  Warning: {proc.args[0]} still running after {grace}s, killing it")
        _kill(proc)


def _kill(proc):
    proc.kill()
    try:
        proc.communicate(timeout=KILL_WAIT)
    except subprocess.TimeoutExpired:
        pass


def _abort(on_abort):
    if on_abort is None:
        return
    try:
        on_abort()
    except Exception as e:
        print(f"  Warning: abort handler failed: {e}")


def aws(*args, **kwargs):
    """Run an aws CLI command."""
    return run(["aws"] + list(args), **kwargs)


def terraform(workdir, *args, **kwargs):
    """Run a terraform command against a working directory."""
    return run(["terraform", f"-chdir={workdir}"] + list(args), **kwargs)


def docker(*args, **kwargs):
    """Run a docker CLI command."""
    return run(["docker"] + list(args), **kwargs)


def check_dependencies(tools=REQUIRED_TOOLS):
    """Raise PreflightError naming every tool missing from PATH."""
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PreflightError(f"Required tool not found: {', '.join(missing)}")


def aws_account_id(env=None):
    """Return the account ID of the active AWS credentials."""
    _, stdout, _ = aws("sts", "get-caller-identity",
                       "--output", "text", "--query", "Account",
                       env=env, timeout=60)
    return stdout
