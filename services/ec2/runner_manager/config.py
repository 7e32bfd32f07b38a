from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from services.ec2.runner_manager.constants import (
    DEFAULT_GITHUB_API_URL,
    DEFAULT_GITHUB_SERVER_URL,
    DEFAULT_INSTANCE_TYPE,
    DEFAULT_NUM_INSTANCES,
    DEFAULT_WAIT_TIMEOUT_SEC,
    TAGGED_RESOURCE_TYPES,
)
from services.ec2.runner_manager.env import get_env, get_env_bool, get_env_int, get_env_json

logger = logging.getLogger("ec2_runner_manager")


def _tags_from_env() -> list[dict[str, str]]:
    tags = get_env_json("AWS_RESOURCE_TAGS", [])
    if not isinstance(tags, list):
        logger.warning("AWS_RESOURCE_TAGS must be a JSON list, ignoring: %r", tags)
        return []
    return tags


@dataclass
class RunnerConfig:
    """
    Options for one start or stop invocation.

    Every field defaults from the environment (or a .env file), so a CI
    step only has to export variables; callers can still override any
    field explicitly.

    Attributes:
        region: AWS region the EC2 client is bound to.
        image_id: AMI id to launch. Ignored when image_name is set.
        image_name: AMI name pattern; the newest owned match is launched.
        instance_type: EC2 instance type.
        num_instances: How many instances to launch (min = max = this).
        subnet_id: Subnet to place the instances in.
        security_group_id: Security group attached to the instances.
        iam_role_name: Instance profile name bound to the instances.
        runner_home_dir: Directory holding a pre-installed runner in the AMI.
        num_runners: Runners to register per instance.
        use_spot_instances: Request one-time spot capacity.
        resource_tags: Tags as a list of {"Key": ..., "Value": ...}.
        github_repository: Repository in "owner/repo" form.
        github_token: Token allowed to manage the repository's runners.
        github_server_url: Base URL runners register against.
        github_api_url: Base URL of the GitHub REST API.
        wait_timeout_sec: Upper bound for the running-state wait.
    """

    region: str | None = field(
        default_factory=lambda: get_env("AWS_REGION") or get_env("AWS_DEFAULT_REGION")
    )
    image_id: str | None = field(default_factory=lambda: get_env("EC2_IMAGE_ID"))
    image_name: str | None = field(default_factory=lambda: get_env("EC2_IMAGE_NAME"))
    instance_type: str = field(
        default_factory=lambda: get_env("EC2_INSTANCE_TYPE", DEFAULT_INSTANCE_TYPE)
    )
    num_instances: int = field(
        default_factory=lambda: get_env_int("NUM_INSTANCES", DEFAULT_NUM_INSTANCES)
    )
    subnet_id: str | None = field(default_factory=lambda: get_env("SUBNET_ID"))
    security_group_id: str | None = field(default_factory=lambda: get_env("SECURITY_GROUP_ID"))
    iam_role_name: str | None = field(default_factory=lambda: get_env("IAM_ROLE_NAME"))
    runner_home_dir: str | None = field(default_factory=lambda: get_env("RUNNER_HOME_DIR"))
    num_runners: int | None = field(default_factory=lambda: get_env_int("NUM_RUNNERS", None))
    use_spot_instances: bool = field(
        default_factory=lambda: get_env_bool("USE_SPOT_INSTANCES", False)
    )
    resource_tags: list[dict[str, str]] = field(default_factory=_tags_from_env)
    github_repository: str | None = field(default_factory=lambda: get_env("GITHUB_REPOSITORY"))
    github_token: str | None = field(default_factory=lambda: get_env("GITHUB_TOKEN"))
    github_server_url: str = field(
        default_factory=lambda: get_env("GITHUB_SERVER_URL", DEFAULT_GITHUB_SERVER_URL)
    )
    github_api_url: str = field(
        default_factory=lambda: get_env("GITHUB_API_URL", DEFAULT_GITHUB_API_URL)
    )
    wait_timeout_sec: int = field(
        default_factory=lambda: get_env_int("RUNNER_WAIT_TIMEOUT", DEFAULT_WAIT_TIMEOUT_SEC)
    )

    @property
    def repository_url(self) -> str:
        """URL the runner registers against, e.g. https://github.com/owner/repo."""
        return f"{self.github_server_url.rstrip('/')}/{self.github_repository}"

    @property
    def tag_specifications(self) -> list[dict[str, Any]]:
        """Tag specifications for run-instances; empty when no tags are configured."""
        if not self.resource_tags:
            return []
        return [
            {"ResourceType": resource_type, "Tags": list(self.resource_tags)}
            for resource_type in TAGGED_RESOURCE_TYPES
        ]

    def validate(self, mode: str = "start") -> list[str]:
        """
        Check the options a given mode needs.

        Args:
            mode: "start" to launch runners, "stop" to terminate them.

        Returns:
            Human-readable problems; empty when the config is usable.
        """
        errors: list[str] = []
        if not self.region:
            errors.append("AWS_REGION is required")
        if mode != "start":
            return errors

        if not self.image_id and not self.image_name:
            errors.append("Either EC2_IMAGE_ID or EC2_IMAGE_NAME is required")
        if not self.instance_type:
            errors.append("EC2_INSTANCE_TYPE is required")
        if not self.subnet_id:
            errors.append("SUBNET_ID is required")
        if not self.security_group_id:
            errors.append("SECURITY_GROUP_ID is required")
        if not self.github_repository or "/" not in self.github_repository:
            errors.append("GITHUB_REPOSITORY is required in 'owner/repo' form")
        if self.num_instances is None or self.num_instances < 1:
            errors.append(f"Invalid NUM_INSTANCES: {self.num_instances} (must be >= 1)")
        for tag in self.resource_tags:
            if not isinstance(tag, dict) or "Key" not in tag or "Value" not in tag:
                errors.append(f"Invalid tag in AWS_RESOURCE_TAGS: {tag!r}")
        return errors
