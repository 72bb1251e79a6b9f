"""boto3 session handling and error helpers shared by the deploy modules."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from functools import partial
from typing import Any, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from minibeast.models.deployment import AWSCredentials

T = TypeVar("T")

# Errors a provisioning stage treats as fatal
PROVIDER_ERRORS: tuple[type[Exception], ...] = (ClientError, BotoCoreError)


def create_session(credentials: AWSCredentials) -> boto3.session.Session:
    """Create a boto3 session bound to the operator's credentials."""
    return boto3.session.Session(
        aws_access_key_id=credentials.access_key,
        aws_secret_access_key=credentials.secret_key,
        region_name=credentials.region,
    )


class AWSClients:
    """Lazily created service clients sharing one session.

    Attributes:
        session: boto3 session the clients are created from
        region: Region the session is bound to
    """

    def __init__(self, session: Any, region: str) -> None:
        """Initialize with a boto3 session (or a compatible fake)."""
        self.session = session
        self.region = region
        self._clients: dict[str, Any] = {}

    @classmethod
    def from_credentials(cls, credentials: AWSCredentials) -> AWSClients:
        """Build a client bundle for a credential tuple."""
        return cls(create_session(credentials), credentials.region)

    def client(self, service: str) -> Any:
        """Return the cached client for a service, creating it on first use."""
        if service not in self._clients:
            self._clients[service] = self.session.client(
                service, region_name=self.region
            )
        return self._clients[service]

    @property
    def ecr(self) -> Any:
        return self.client("ecr")

    @property
    def s3(self) -> Any:
        return self.client("s3")

    @property
    def iam(self) -> Any:
        return self.client("iam")

    @property
    def codebuild(self) -> Any:
        return self.client("codebuild")

    @property
    def logs(self) -> Any:
        return self.client("logs")

    @property
    def ecs(self) -> Any:
        return self.client("ecs")

    @property
    def ec2(self) -> Any:
        return self.client("ec2")

    @property
    def sfn(self) -> Any:
        return self.client("stepfunctions")

    @property
    def sts(self) -> Any:
        return self.client("sts")


ClientFactory = Callable[[AWSCredentials], AWSClients]


def error_code(exc: BaseException) -> str | None:
    """Return the AWS error code carried by a ClientError, if any."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def error_message(exc: BaseException) -> str:
    """Return the provider message for an error, falling back to str()."""
    if isinstance(exc, ClientError):
        message = exc.response.get("Error", {}).get("Message")
        if message:
            return message
    return str(exc)


def is_conflict(exc: BaseException, *codes: str) -> bool:
    """Return True if ``exc`` is a ClientError with one of ``codes``."""
    return error_code(exc) in codes


async def call(fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run a blocking boto3 call in a worker thread."""
    return await asyncio.to_thread(partial(fn, *args, **kwargs))
