"""Run configuration for the scheduler end-to-end test.

The configuration is built once at start-up and passed to every component.
Sources, lowest to highest precedence:

  1. Defaults (DEFAULT_CONFIG)
  2. Optional YAML file (--config), keys equal to RunConfig field names
  3. Environment, with an optional .env file underneath the process env:
       TF_VAR_region       - Region the fixture is provisioned in
       E2E_TERRAFORM_DIR   - Terraform working directory of the fixture
       E2E_IMAGE_NAME      - Docker image tag of the scheduler under test
       E2E_BUILD_CONTEXT   - Docker build context (scheduler repository root)
       E2E_SKIP_BUILD      - "true", "1" or "yes" to reuse an existing image
       E2E_MAX_WAIT        - Seconds to wait for each state transition
       E2E_POLL_INTERVAL   - Seconds between state queries
       E2E_LOG_LEVEL       - LOG_LEVEL passed to the scheduler
       E2E_INVOKE_TIMEOUT  - Seconds before a scheduler run is abandoned
       E2E_RESULTS_PATH    - Where the JSON results are written
  4. Command-line flags
"""
import os
from collections import namedtuple

import yaml
from dotenv import dotenv_values

from scheduler_e2e.errors import ConfigError

RunConfig = namedtuple("RunConfig", [
    "region",
    "terraform_dir",
    "image_name",
    "build_context",
    "build_image",
    "max_wait",
    "poll_interval",
    "scheduler_log_level",
    "resource_flag",
    "invoke_timeout",
    "results_path",
])

DEFAULT_CONFIG = RunConfig(
    region=None,
    terraform_dir=os.path.join("tests", "e2e", "terraform"),
    image_name="scheduler:e2e-test",
    build_context=".",
    build_image=True,
    max_wait=300,
    poll_interval=15,
    scheduler_log_level="info",
    resource_flag="EC2_SCHEDULE",
    invoke_timeout=900,
    results_path="/tmp/scheduler-e2e-results.json",
)

ENV_VARS = {
    "region": "TF_VAR_region",
    "terraform_dir": "E2E_TERRAFORM_DIR",
    "image_name": "E2E_IMAGE_NAME",
    "build_context": "E2E_BUILD_CONTEXT",
    "max_wait": "E2E_MAX_WAIT",
    "poll_interval": "E2E_POLL_INTERVAL",
    "scheduler_log_level": "E2E_LOG_LEVEL",
    "invoke_timeout": "E2E_INVOKE_TIMEOUT",
    "results_path": "E2E_RESULTS_PATH",
}

INT_FIELDS = {"max_wait", "poll_interval", "invoke_timeout"}
BOOL_FIELDS = {"build_image"}


def read_environment(env_file=".env", environ=None):
    """Return the process environment layered over an optional dotenv file."""
    values = {}
    if env_file and os.path.isfile(env_file):
        values.update({k: v for k, v in dotenv_values(env_file).items()
                       if v is not None})
    values.update(os.environ if environ is None else environ)
    return values


def load_config_file(path):
    """Read RunConfig overrides from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    unknown = sorted(set(data) - set(RunConfig._fields))
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
    return data


def _coerce(name, value):
    if name in INT_FIELDS:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be an integer (got {value!r})") from None
        if number <= 0:
            raise ConfigError(f"{name} must be positive (got {number})")
        return number
    if name in BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes")
    return str(value)


def build_config(environ, config_file=None, overrides=None):
    """Build the immutable RunConfig for one run."""
    values = {}
    if config_file:
        values.update({k: v for k, v in load_config_file(config_file).items()
                       if v is not None})

    for field, var in ENV_VARS.items():
        raw = (environ.get(var) or "").strip()
        if raw:
            values[field] = raw
    skip_build = (environ.get("E2E_SKIP_BUILD") or "").strip()
    if skip_build:
        values["build_image"] = not _coerce("build_image", skip_build)

    for field, value in (overrides or {}).items():
        if value is not None:
            values[field] = value

    return DEFAULT_CONFIG._replace(
        **{field: _coerce(field, value) for field, value in values.items()})
