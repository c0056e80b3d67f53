#!/usr/bin/env python3
"""
End-to-end test for the EC2 scheduler.

Provisions a disposable instance with Terraform, runs the scheduler image to
stop it, verifies the state, then starts it again and verifies. The fixture
is destroyed on exit, on success, failure, Ctrl-C or SIGTERM.

Usage:
    python3 -m scheduler_e2e

Override region:
    TF_VAR_region=us-east-1 python3 -m scheduler_e2e
    python3 -m scheduler_e2e --region us-east-1
"""
import argparse
import signal
import sys

from scheduler_e2e import commands
from scheduler_e2e.config import build_config, read_environment
from scheduler_e2e.errors import CommandError, CredentialError, E2EError
from scheduler_e2e.invoker import SchedulerInvoker
from scheduler_e2e.orchestrator import Orchestrator, save_results
from scheduler_e2e.provisioning import TerraformBackend


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Run the scheduler stop/start end-to-end test")
    parser.add_argument("--region", default=None,
                        help="AWS region for the test instance (default: terraform's)")
    parser.add_argument("--config", default=None,
                        help="YAML file with run configuration overrides")
    parser.add_argument("--env-file", default=".env",
                        help="dotenv file read underneath the process environment")
    parser.add_argument("--terraform-dir", default=None,
                        help="Terraform working directory of the test fixture")
    parser.add_argument("--image", dest="image_name", default=None,
                        help="Docker image tag for the scheduler under test")
    parser.add_argument("--build-context", default=None,
                        help="Docker build context (scheduler repository root)")
    parser.add_argument("--skip-build", action="store_true",
                        help="Reuse an existing image instead of building it")
    parser.add_argument("--skip-preflight", action="store_true",
                        help="Skip the tool and AWS credential checks")
    parser.add_argument("--results", dest="results_path", default=None,
                        help="Path to write the JSON results")
    return parser.parse_args(argv)


def preflight(environ):
    """Check required tools and that AWS credentials work."""
    commands.check_dependencies()
    print("Verifying AWS credentials...")
    try:
        account = commands.aws_account_id(env=dict(environ))
    except CommandError as e:
        raise CredentialError(f"AWS credentials check failed: {e.detail}") from e
    print(f"AWS credentials OK (account: {account})")


def _raise_exit(signum, frame):
    raise SystemExit(128 + signum)


def install_signal_handlers():
    """Turn SIGTERM into SystemExit so cleanup runs as for Ctrl-C."""
    signal.signal(signal.SIGTERM, _raise_exit)


def print_verdict(result):
    print("")
    print("=" * 42)
    if result.passed:
        print("  ALL E2E TESTS PASSED")
    else:
        print(f"  E2E TESTS FAILED at step: {result.failed_step}")
        if result.error:
            print(f"  {result.error}")
    print("=" * 42)


def main(argv=None):
    args = parse_args(argv)
    environ = read_environment(args.env_file)

    overrides = {
        "region": args.region,
        "terraform_dir": args.terraform_dir,
        "image_name": args.image_name,
        "build_context": args.build_context,
        "results_path": args.results_path,
    }
    if args.skip_build:
        overrides["build_image"] = False

    try:
        config = build_config(environ, config_file=args.config, overrides=overrides)
    except E2EError as e:
        print(f"\nFATAL: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"{'#' * 60}")
    print("# Scheduler E2E Test")
    print(f"# Region:    {config.region or '(terraform default)'}")
    print(f"# Terraform: {config.terraform_dir}")
    print(f"# Image:     {config.image_name}")
    print(f"{'#' * 60}")

    if not args.skip_preflight:
        try:
            preflight(environ)
        except E2EError as e:
            print(f"\nFATAL: {e}", file=sys.stderr)
            sys.exit(1)

    install_signal_handlers()

    backend = TerraformBackend(config.terraform_dir, region=config.region, environ=environ)
    invoker = SchedulerInvoker(config.image_name,
                               log_level=config.scheduler_log_level,
                               resource_flag=config.resource_flag,
                               timeout=config.invoke_timeout,
                               environ=environ)
    orchestrator = Orchestrator(config, backend, invoker, environ=environ)

    try:
        result = orchestrator.run()
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)

    save_results(result, config.results_path)
    print_verdict(result)
    sys.exit(0 if result.passed else 1)


if __name__ == "__main__":
    main()
