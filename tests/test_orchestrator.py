"""Tests for the stop/start orchestration and its cleanup guarantee."""
import json

import pytest

from fakes import FakeBackend, FakeInvoker, PhasedStates, ScriptedStates
from scheduler_e2e.errors import (
    BuildError,
    CredentialError,
    DestroyError,
    InvocationError,
    ProvisionError,
)
from scheduler_e2e.orchestrator import Orchestrator, Phase, result_to_dict, save_results


def happy_states():
    return PhasedStates(initial=["running"],
                        after_stop=["running", "running", "stopped"],
                        after_start=["stopped", "running"])


def make_orchestrator(config, sleep, backend=None, invoker=None, states=None,
                      resolver=None, credentials=None):
    states = states or happy_states()
    if invoker is None:
        invoker = FakeInvoker(on_invoke=getattr(states, "record", None))
    resolved = []

    def default_resolver(environ):
        resolved.append(environ)
        return credentials

    orchestrator = Orchestrator(
        config,
        backend or FakeBackend(),
        invoker,
        environ={"AWS_ACCESS_KEY_ID": "AKIAEXAMPLE"},
        credential_resolver=resolver or default_resolver,
        query=states,
        sleep=sleep,
    )
    orchestrator.resolved = resolved
    return orchestrator


class TestSuccessfulRun:
    """Tests for the stop/start round trip that passes."""

    def test_round_trip_passes(self, config, sleep, credentials):
        backend = FakeBackend()
        orchestrator = make_orchestrator(config, sleep, backend=backend,
                                         credentials=credentials)

        result = orchestrator.run()

        assert result.passed is True
        assert result.failed_step is None
        assert result.error is None
        assert orchestrator.invoker.actions == ["stop", "start"]
        assert backend.provision_calls == 1
        assert backend.destroy_calls == 1

    def test_poll_outcomes(self, config, sleep, credentials):
        result = make_orchestrator(config, sleep, credentials=credentials).run()

        assert result.stop_outcome.succeeded is True
        assert result.stop_outcome.elapsed_seconds == 30
        assert result.start_outcome.succeeded is True
        assert result.start_outcome.elapsed_seconds == 15
        assert [o.desired_state for o in result.outcomes] == ["running", "stopped", "running"]

    def test_phases_follow_state_machine(self, config, sleep, credentials):
        result = make_orchestrator(config, sleep, credentials=credentials).run()

        assert result.phases == (
            "init", "provisioned", "waiting-running", "stopping-invoked",
            "waiting-stopped", "starting-invoked", "waiting-running-again", "passed",
        )

    def test_credentials_resolved_once(self, config, sleep, credentials):
        orchestrator = make_orchestrator(config, sleep, credentials=credentials)

        orchestrator.run()

        assert orchestrator.resolved == [{"AWS_ACCESS_KEY_ID": "AKIAEXAMPLE"}]

    def test_builds_image_when_enabled(self, config, sleep, credentials):
        config = config._replace(build_image=True, build_context="/src/scheduler")
        orchestrator = make_orchestrator(config, sleep, credentials=credentials)

        orchestrator.run()

        assert orchestrator.invoker.builds == ["/src/scheduler"]

    def test_skips_build_when_disabled(self, config, sleep, credentials):
        orchestrator = make_orchestrator(config, sleep, credentials=credentials)

        orchestrator.run()

        assert orchestrator.invoker.builds == []


class TestFailedRun:
    """Tests for failure exits: verdict, skipped steps and cleanup."""

    def test_stop_never_observed(self, config, sleep, credentials):
        """20 ticks of running after stop: fail, start never attempted, destroy once."""
        backend = FakeBackend()
        states = PhasedStates(initial=["running"], after_stop=["running"],
                              after_start=["running"])
        orchestrator = make_orchestrator(config, sleep, backend=backend, states=states,
                                         credentials=credentials)

        result = orchestrator.run()

        assert result.passed is False
        assert result.failed_step == "wait for stopped"
        assert "stopped" in result.error
        assert result.stop_outcome.succeeded is False
        assert result.stop_outcome.elapsed_seconds == 300
        assert result.start_outcome is None
        assert orchestrator.invoker.actions == ["stop"]
        assert backend.destroy_calls == 1
        assert result.phases[-1] == Phase.FAILED.value

    def test_stop_invocation_fails(self, config, sleep, credentials):
        backend = FakeBackend()
        invoker = FakeInvoker(failures={"stop": InvocationError("rc=1")})
        orchestrator = make_orchestrator(config, sleep, backend=backend, invoker=invoker,
                                         states=ScriptedStates(["running"]),
                                         credentials=credentials)

        result = orchestrator.run()

        assert result.passed is False
        assert result.failed_step == "run scheduler (stop)"
        assert invoker.actions == ["stop"]
        assert backend.destroy_calls == 1

    def test_start_invocation_fails(self, config, sleep, credentials):
        backend = FakeBackend()
        states = happy_states()
        invoker = FakeInvoker(failures={"start": InvocationError("rc=2")},
                              on_invoke=states.record)
        orchestrator = make_orchestrator(config, sleep, backend=backend, invoker=invoker,
                                         states=states, credentials=credentials)

        result = orchestrator.run()

        assert result.passed is False
        assert result.failed_step == "run scheduler (start)"
        assert result.stop_outcome.succeeded is True
        assert result.start_outcome is None
        assert backend.destroy_calls == 1

    def test_instance_never_running(self, config, sleep, credentials):
        backend = FakeBackend()
        orchestrator = make_orchestrator(config, sleep, backend=backend,
                                         states=ScriptedStates(["pending"]),
                                         credentials=credentials)

        result = orchestrator.run()

        assert result.failed_step == "wait for running"
        assert orchestrator.invoker.actions == []
        assert orchestrator.resolved == []
        assert backend.destroy_calls == 1

    def test_start_never_observed(self, config, sleep, credentials):
        states = PhasedStates(initial=["running"], after_stop=["stopped"],
                              after_start=["stopped"])
        result = make_orchestrator(config, sleep, states=states,
                                   credentials=credentials).run()

        assert result.passed is False
        assert result.failed_step == "wait for running after start"
        assert result.start_outcome.final_state == "stopped"

    def test_provision_failure_still_destroys(self, config, sleep):
        """Partially created resources are torn down too."""
        backend = FakeBackend(provision_error=ProvisionError("apply failed"))
        orchestrator = make_orchestrator(config, sleep, backend=backend)

        result = orchestrator.run()

        assert result.passed is False
        assert result.failed_step == "provision"
        assert result.error == "apply failed"
        assert orchestrator.invoker.actions == []
        assert backend.destroy_calls == 1

    def test_credential_failure(self, config, sleep):
        backend = FakeBackend()

        def resolver(environ):
            raise CredentialError("no credential source")

        orchestrator = make_orchestrator(config, sleep, backend=backend, resolver=resolver)

        result = orchestrator.run()

        assert result.failed_step == "resolve credentials"
        assert orchestrator.invoker.actions == []
        assert backend.destroy_calls == 1

    def test_build_failure(self, config, sleep):
        backend = FakeBackend()
        invoker = FakeInvoker()

        def fail_build(context_dir):
            raise BuildError("docker build failed")

        invoker.build = fail_build
        orchestrator = make_orchestrator(config._replace(build_image=True), sleep,
                                         backend=backend, invoker=invoker)

        result = orchestrator.run()

        assert result.failed_step == "build image"
        assert backend.provision_calls == 0
        assert backend.destroy_calls == 1

    def test_unexpected_exception_is_a_failed_verdict(self, config, sleep, credentials, capsys):
        """A non-harness error mid-run still yields a verdict and one destroy."""
        backend = FakeBackend()
        invoker = FakeInvoker(failures={"stop": PermissionError("docker socket denied")})
        orchestrator = make_orchestrator(config, sleep, backend=backend, invoker=invoker,
                                         states=ScriptedStates(["running"]),
                                         credentials=credentials)

        result = orchestrator.run()

        assert result.passed is False
        assert result.failed_step == "run scheduler (stop)"
        assert "PermissionError: docker socket denied" in result.error
        assert result.phases[-1] == Phase.FAILED.value
        assert backend.destroy_calls == 1
        assert "Traceback" in capsys.readouterr().err


class TestCleanup:
    """Tests for the destroy-exactly-once guarantee."""

    def test_destroy_failure_does_not_change_verdict(self, config, sleep, credentials):
        backend = FakeBackend(destroy_error=DestroyError("state locked"))
        result = make_orchestrator(config, sleep, backend=backend,
                                   credentials=credentials).run()

        assert result.passed is True
        assert backend.destroy_calls == 1

    def test_unexpected_destroy_exception_is_contained(self, config, sleep, credentials):
        backend = FakeBackend(destroy_error=ValueError("boom"))
        result = make_orchestrator(config, sleep, backend=backend,
                                   credentials=credentials).run()

        assert result.passed is True

    def test_interrupt_still_destroys(self, config, sleep, credentials):
        """Abrupt termination mid-run propagates after cleanup."""
        backend = FakeBackend()

        def interrupt(action):
            raise KeyboardInterrupt

        invoker = FakeInvoker(on_invoke=interrupt)
        orchestrator = make_orchestrator(config, sleep, backend=backend, invoker=invoker,
                                         states=ScriptedStates(["running"]),
                                         credentials=credentials)

        with pytest.raises(KeyboardInterrupt):
            orchestrator.run()

        assert backend.destroy_calls == 1

    def test_system_exit_still_destroys(self, config, sleep, credentials):
        backend = FakeBackend()

        def terminate(seconds):
            raise SystemExit(143)

        orchestrator = make_orchestrator(config, terminate, backend=backend,
                                         states=ScriptedStates(["pending"]),
                                         credentials=credentials)

        with pytest.raises(SystemExit):
            orchestrator.run()

        assert backend.destroy_calls == 1

    def test_destroy_once_per_run(self, config, sleep, credentials):
        backend = FakeBackend()
        invoker = FakeInvoker(failures={"stop": InvocationError("x"),
                                        "start": InvocationError("y")})
        orchestrator = make_orchestrator(config, sleep, backend=backend, invoker=invoker,
                                         states=ScriptedStates(["running"]),
                                         credentials=credentials)

        orchestrator.run()
        orchestrator.run()

        assert backend.destroy_calls == 2


class TestResults:
    """Tests for the JSON results report."""

    def test_result_to_dict(self, config, sleep, credentials):
        result = make_orchestrator(config, sleep, credentials=credentials).run()

        data = result_to_dict(result)

        assert data["status"] == "PASS"
        assert data["stop_outcome"]["elapsed_seconds"] == 30
        assert len(data["outcomes"]) == 3

    def test_save_results(self, config, sleep, credentials, tmp_path):
        result = make_orchestrator(config, sleep, credentials=credentials).run()
        path = tmp_path / "results.json"

        assert save_results(result, str(path)) is True

        data = json.loads(path.read_text())
        assert data["status"] == "PASS"
        assert data["phases"][-1] == "passed"

    def test_save_results_unwritable_path(self, config, sleep, credentials, tmp_path):
        result = make_orchestrator(config, sleep, credentials=credentials).run()

        assert save_results(result, str(tmp_path / "missing" / "results.json")) is False
