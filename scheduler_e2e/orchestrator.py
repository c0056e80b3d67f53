"""
Stop/start round trip of the scheduler against a disposable EC2 instance.

Sequence (every step is skipped once one has failed):

  build image -> provision -> wait running -> resolve credentials
  -> run scheduler (stop) -> wait stopped
  -> run scheduler (start) -> wait running

The fixture is torn down exactly once after the sequence, whatever happened.
"""
import json
import time
import traceback
from collections import namedtuple
from enum import Enum

from scheduler_e2e.credentials import resolve_credentials
from scheduler_e2e.errors import E2EError
from scheduler_e2e.invoker import ScheduleAction
from scheduler_e2e.poller import get_instance_state, wait_for_state
from scheduler_e2e.provisioning import FixtureGuard

RUNNING = "running"
STOPPED = "stopped"


class Phase(Enum):
    INIT = "init"
    PROVISIONED = "provisioned"
    WAITING_RUNNING = "waiting-running"
    STOPPING_INVOKED = "stopping-invoked"
    WAITING_STOPPED = "waiting-stopped"
    STARTING_INVOKED = "starting-invoked"
    WAITING_RUNNING_AGAIN = "waiting-running-again"
    PASSED = "passed"
    FAILED = "failed"


RunResult = namedtuple("RunResult", [
    "passed",
    "failed_step",
    "error",
    "stop_outcome",
    "start_outcome",
    "outcomes",
    "phases",
    "duration",
])


def result_to_dict(result):
    """JSON-friendly view of a RunResult."""
    def outcome(o):
        return dict(o._asdict()) if o is not None else None

    return {
        "status": "PASS" if result.passed else "FAIL",
        "failed_step": result.failed_step,
        "error": result.error,
        "stop_outcome": outcome(result.stop_outcome),
        "start_outcome": outcome(result.start_outcome),
        "outcomes": [outcome(o) for o in result.outcomes],
        "phases": list(result.phases),
        "duration": result.duration,
    }


def save_results(result, path):
    """Write the run result as JSON. Returns True when the file was written."""
    try:
        with open(path, "w") as f:
            json.dump(result_to_dict(result), f, indent=2)
    except OSError as e:
        print(f"  Warning: could not write results to {path}: {e}")
        return False
    print(f"\nResults written to {path}")
    return True


class Orchestrator:
    """Drives one end-to-end run and owns its fixture."""

    def __init__(self, config, backend, invoker, environ=None,
                 credential_resolver=resolve_credentials,
                 query=get_instance_state, sleep=time.sleep):
        self.config = config
        self.backend = backend
        self.invoker = invoker
        self.environ = environ
        self.credential_resolver = credential_resolver
        self.query = query
        self.sleep = sleep
        self._reset()

    def _reset(self):
        self.phase = Phase.INIT
        self.phases = [Phase.INIT]
        self.step = None
        self.failed_step = None
        self.error = None
        self.outcomes = []
        self.stop_outcome = None
        self.start_outcome = None

    def run(self):
        """Run the whole sequence. Returns a RunResult once cleanup is done."""
        self._reset()
        start_time = time.time()
        with FixtureGuard(self.backend) as guard:
            try:
                self._run_steps(guard)
            except E2EError as e:
                self._fail(str(e))
            except Exception as e:
                traceback.print_exc()
                self._fail(f"unexpected error: {type(e).__name__}: {e}")

        return RunResult(
            passed=self.phase is Phase.PASSED,
            failed_step=self.failed_step,
            error=self.error,
            stop_outcome=self.stop_outcome,
            start_outcome=self.start_outcome,
            outcomes=tuple(self.outcomes),
            phases=tuple(p.value for p in self.phases),
            duration=time.time() - start_time,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(self, guard):
        if self.config.build_image:
            self._section("Building Docker image", "build image")
            self.invoker.build(self.config.build_context)

        self._section("Provisioning test infrastructure", "provision")
        fixture = guard.provision()
        self._enter(Phase.PROVISIONED)

        self._section("Waiting for instance to be running", "wait for running")
        self._enter(Phase.WAITING_RUNNING)
        if not self._wait(fixture, RUNNING).succeeded:
            return

        self._section("Resolving AWS credentials", "resolve credentials")
        credentials = self.credential_resolver(self.environ)

        self._section(f"Test: SCHEDULE_ACTION={ScheduleAction.STOP}", "run scheduler (stop)")
        self._enter(Phase.STOPPING_INVOKED)
        self.invoker.invoke(ScheduleAction.STOP, fixture, credentials)

        self.step = "wait for stopped"
        self._enter(Phase.WAITING_STOPPED)
        self.stop_outcome = self._wait(fixture, STOPPED)
        if not self.stop_outcome.succeeded:
            return
        print("PASS: instance stopped successfully")

        self._section(f"Test: SCHEDULE_ACTION={ScheduleAction.START}", "run scheduler (start)")
        self._enter(Phase.STARTING_INVOKED)
        self.invoker.invoke(ScheduleAction.START, fixture, credentials)

        self.step = "wait for running after start"
        self._enter(Phase.WAITING_RUNNING_AGAIN)
        self.start_outcome = self._wait(fixture, RUNNING)
        if not self.start_outcome.succeeded:
            return
        print("PASS: instance started successfully")

        self.step = None
        self._enter(Phase.PASSED)

    def _wait(self, fixture, desired_state):
        outcome = wait_for_state(
            fixture.instance_id, desired_state, fixture.region,
            max_wait=self.config.max_wait, interval=self.config.poll_interval,
            query=self.query, sleep=self.sleep,
        )
        self.outcomes.append(outcome)
        if not outcome.succeeded:
            self._fail(f"timed out after {self.config.max_wait}s waiting for state "
                       f"'{desired_state}' (last: {outcome.final_state})")
        return outcome

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------

    def _section(self, title, step):
        self.step = step
        print(f"\n=== {title} ===")

    def _enter(self, phase):
        self.phase = phase
        self.phases.append(phase)

    def _fail(self, message):
        self.failed_step = self.step
        self.error = message
        self._enter(Phase.FAILED)
        print(f"FAIL [{self.step}]: {message}")
