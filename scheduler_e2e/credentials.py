"""Resolve AWS credentials for the scheduler container.

Credentials already present in the environment are used unchanged.
Otherwise they are exported from the AWS CLI credential chain (profiles,
SSO, instance roles). Values only ever live in memory and in the child
process environment of the scheduler run.
"""
import os
from collections import namedtuple
from io import StringIO

from dotenv import dotenv_values

from scheduler_e2e import commands
from scheduler_e2e.errors import CommandError, CredentialError

ACCESS_KEY_VAR = "AWS_ACCESS_KEY_ID"
SECRET_KEY_VAR = "AWS_SECRET_ACCESS_KEY"
SESSION_TOKEN_VAR = "AWS_SESSION_TOKEN"


class Credentials(namedtuple("Credentials", ["access_key", "secret_key", "session_token"])):
    """AWS credential triple. The repr never shows any of the three values."""

    __slots__ = ()

    def __new__(cls, access_key, secret_key, session_token=""):
        return super().__new__(cls, access_key, secret_key, session_token or "")

    def __repr__(self):
        return "Credentials(access_key='***', secret_key='***', session_token='***')"

    __str__ = __repr__

    def as_env(self):
        return {
            ACCESS_KEY_VAR: self.access_key,
            SECRET_KEY_VAR: self.secret_key,
            SESSION_TOKEN_VAR: self.session_token,
        }


def resolve_credentials(environ=None):
    """Return Credentials from the environment or the AWS CLI chain."""
    environ = os.environ if environ is None else environ

    access_key = environ.get(ACCESS_KEY_VAR) or ""
    if access_key:
        secret_key = environ.get(SECRET_KEY_VAR) or ""
        if not secret_key:
            raise CredentialError(f"{ACCESS_KEY_VAR} is set but {SECRET_KEY_VAR} is missing")
        print("  Using AWS credentials from the environment")
        return Credentials(access_key, secret_key, environ.get(SESSION_TOKEN_VAR) or "")

    print("  Resolving AWS credentials from the AWS CLI credential chain...")
    try:
        _, stdout, _ = commands.aws("configure", "export-credentials", "--format", "env",
                                    env=dict(environ), timeout=120)
    except CommandError as e:
        raise CredentialError(f"Could not resolve AWS credentials: {e.detail}") from e

    exported = dotenv_values(stream=StringIO(stdout))
    access_key = exported.get(ACCESS_KEY_VAR) or ""
    secret_key = exported.get(SECRET_KEY_VAR) or ""
    if not access_key or not secret_key:
        raise CredentialError("AWS CLI did not export an access key and secret key")
    print("  Resolved credentials from the AWS CLI")
    return Credentials(access_key, secret_key, exported.get(SESSION_TOKEN_VAR) or "")
