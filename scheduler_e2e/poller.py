"""Wait for an EC2 instance to reach a lifecycle state."""
import subprocess
import time
from collections import namedtuple

from scheduler_e2e import commands
from scheduler_e2e.errors import CommandError

UNKNOWN_STATE = "unknown"

# Timeouts
DEFAULT_MAX_WAIT = 300  # seconds before giving up on a state
DEFAULT_INTERVAL = 15  # seconds between state queries

PollOutcome = namedtuple("PollOutcome", [
    "resource_id", "desired_state", "final_state", "elapsed_seconds", "succeeded",
])


def get_instance_state(instance_id, region):
    """Query the current state name of an instance, or "unknown" on error."""
    try:
        _, stdout, _ = commands.aws(
            "ec2", "describe-instances",
            "--region", region,
            "--instance-ids", instance_id,
            "--query", "Reservations[0].Instances[0].State.Name",
            "--output", "text",
            echo=False, timeout=60,
        )
    except CommandError:
        return UNKNOWN_STATE
    return stdout or UNKNOWN_STATE


def wait_for_state(resource_id, desired_state, region,
                   max_wait=DEFAULT_MAX_WAIT, interval=DEFAULT_INTERVAL,
                   query=get_instance_state, sleep=time.sleep):
    """Poll until resource_id reports desired_state or max_wait runs out.

    Elapsed time is counted in whole intervals, not wall-clock time. A query
    that fails counts as state "unknown" and polling carries on. Returns a
    PollOutcome; a timeout is a failed outcome, never an exception.
    """
    elapsed = 0
    current_state = ""

    print(f"Waiting for {resource_id} to reach state: {desired_state}")

    while elapsed < max_wait:
        try:
            current_state = query(resource_id, region)
        except (RuntimeError, OSError, subprocess.SubprocessError):
            current_state = UNKNOWN_STATE

        print(f"  [{elapsed}s] state={current_state}")

        if current_state == desired_state:
            print(f"Instance reached state: {desired_state}")
            return PollOutcome(resource_id, desired_state, current_state, elapsed, True)

        sleep(interval)
        elapsed += interval

    print(f"FAIL: timed out after {max_wait}s waiting for state "
          f"'{desired_state}' (last: {current_state})")
    return PollOutcome(resource_id, desired_state, current_state, elapsed, False)
