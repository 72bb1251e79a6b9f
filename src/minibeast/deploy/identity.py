"""IAM role creation and propagation waits.

Newly created IAM roles are not usable everywhere immediately. Every stage
that creates a role waits a fixed delay afterwards through a single
``PropagationWaiter`` so tests can run with no delay at all.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from minibeast.config.defaults import BUILD_POLL_INTERVAL, PROPAGATION_DELAYS
from minibeast.deploy.aws import call, error_message, is_conflict

POLICY_VERSION = "2012-10-17"

CODEBUILD_MANAGED_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryPowerUser",
    "arn:aws:iam::aws:policy/AmazonS3ReadOnlyAccess",
    "arn:aws:iam::aws:policy/CloudWatchLogsFullAccess",
)
ECS_EXECUTION_MANAGED_POLICY = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)
TASK_ROLE_POLICY_NAME = "SSMParameterStoreAccess"
STEPFUNCTIONS_POLICY_NAME = "StepFunctionsEcsAccess"


def trust_policy(service: str) -> dict[str, Any]:
    """Return an assume-role policy trusting an AWS service principal."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": service},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def task_role_policy(region: str) -> dict[str, Any]:
    """Inline policy for the container: SSM parameters, KMS decrypt, SES send."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Action": [
                    "ssm:GetParameter",
                    "ssm:GetParameters",
                    "ssm:GetParametersByPath",
                ],
                "Resource": f"arn:aws:ssm:{region}:*:parameter/*",
            },
            {"Effect": "Allow", "Action": ["kms:Decrypt"], "Resource": "*"},
            {
                "Effect": "Allow",
                "Action": ["ses:SendEmail", "ses:SendRawEmail"],
                "Resource": "*",
            },
        ],
    }


def stepfunctions_policy() -> dict[str, Any]:
    """Inline policy letting the workflow run ECS tasks synchronously."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Action": [
                    "ecs:RunTask",
                    "ecs:StopTask",
                    "ecs:DescribeTasks",
                    "iam:PassRole",
                ],
                "Resource": "*",
            },
            {
                # runTask.sync is backed by a managed EventBridge rule
                "Effect": "Allow",
                "Action": [
                    "events:PutTargets",
                    "events:PutRule",
                    "events:DescribeRule",
                    "events:DeleteRule",
                    "events:RemoveTargets",
                    "events:TagResource",
                ],
                "Resource": "*",
            },
            {
                "Effect": "Allow",
                "Action": [
                    "logs:CreateLogGroup",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                    "logs:DescribeLogGroups",
                    "logs:DescribeLogStreams",
                ],
                "Resource": "*",
            },
        ],
    }


@dataclass
class PropagationWaiter:
    """Fixed waits for IAM propagation and build polling.

    Attributes:
        delays: Seconds to wait per role kind after the role is created
        poll_interval: Seconds between build status polls
    """

    delays: Mapping[str, float] = field(
        default_factory=lambda: dict(PROPAGATION_DELAYS)
    )
    poll_interval: float = BUILD_POLL_INTERVAL

    @classmethod
    def immediate(cls) -> PropagationWaiter:
        """Return a waiter that never sleeps."""
        return cls(delays={}, poll_interval=0.0)

    def delay_for(self, kind: str) -> float:
        return float(self.delays.get(kind, 0.0))

    async def wait_for_propagation(self, kind: str) -> None:
        """Sleep for the configured propagation delay of a role kind."""
        delay = self.delay_for(kind)
        if delay > 0:
            await asyncio.sleep(delay)

    async def wait_for_poll(self) -> None:
        """Sleep for one build poll interval."""
        if self.poll_interval > 0:
            await asyncio.sleep(self.poll_interval)


@dataclass
class RoleResult:
    """Outcome of ``ensure_role``."""

    arn: str
    created: bool


async def _apply_policies(
    iam: Any,
    role_name: str,
    managed_policies: Sequence[str],
    inline_policies: Mapping[str, dict[str, Any]],
    log: Callable[[str], None],
) -> None:
    """Attach managed and put inline policies; both calls are idempotent."""
    for policy_arn in managed_policies:
        try:
            await call(iam.attach_role_policy, RoleName=role_name, PolicyArn=policy_arn)
        except Exception as exc:
            if not is_conflict(exc, "LimitExceeded", "LimitExceededException"):
                raise
            log(f"Policy attachment: {error_message(exc)}")
            continue
        log(f"Attached policy {policy_arn.rsplit('/', 1)[-1]}")
    for policy_name, document in inline_policies.items():
        await call(
            iam.put_role_policy,
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=json.dumps(document),
        )
        log(f"Attached inline policy {policy_name}")


async def ensure_role(
    iam: Any,
    role_name: str,
    service: str,
    *,
    kind: str,
    waiter: PropagationWaiter,
    managed_policies: Sequence[str] = (),
    inline_policies: Mapping[str, dict[str, Any]] | None = None,
    log: Callable[[str], None] = lambda message: None,
) -> RoleResult:
    """Create an IAM role, or reuse it if it already exists.

    Managed and inline policies are applied in both cases, so a role left
    without permissions by an interrupted earlier attempt is repaired. Only
    a newly created role is followed by the propagation wait for ``kind``.

    Args:
        iam: boto3 IAM client
        role_name: Role name (at most 64 characters)
        service: Service principal trusted by the role
        kind: Propagation delay key
        waiter: Propagation waiter
        managed_policies: Managed policy ARNs to attach
        inline_policies: Inline policy documents by policy name
        log: Callback receiving progress lines

    Returns:
        RoleResult with the role ARN

    Raises:
        botocore.exceptions.ClientError: For any error other than the role
            already existing or the managed policy limit being reached
    """
    inline_policies = inline_policies or {}
    try:
        response = await call(
            iam.create_role,
            RoleName=role_name,
            AssumeRolePolicyDocument=json.dumps(trust_policy(service)),
        )
        created = True
    except Exception as exc:
        if not is_conflict(exc, "EntityAlreadyExists", "EntityAlreadyExistsException"):
            raise
        response = await call(iam.get_role, RoleName=role_name)
        created = False

    arn = response["Role"]["Arn"]
    log(f"Created role: {arn}" if created else f"Using existing role: {arn}")
    await _apply_policies(iam, role_name, managed_policies, inline_policies, log)
    if not created:
        log("Verified policies attached to existing role")
        return RoleResult(arn=arn, created=False)

    delay = waiter.delay_for(kind)
    if delay > 0:
        log(f"Waiting for IAM role propagation ({delay:g} seconds)...")
    await waiter.wait_for_propagation(kind)
    return RoleResult(arn=arn, created=True)
