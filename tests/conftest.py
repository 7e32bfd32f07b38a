"""Shared test fixtures for the EC2 runner services."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from services.ec2.runner_manager import EC2RunnerManager, RunnerConfig

CONFIG_ENV_VARS = (
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
    "EC2_IMAGE_ID",
    "EC2_IMAGE_NAME",
    "EC2_INSTANCE_TYPE",
    "EC2_INSTANCE_ID",
    "NUM_INSTANCES",
    "SUBNET_ID",
    "SECURITY_GROUP_ID",
    "IAM_ROLE_NAME",
    "RUNNER_HOME_DIR",
    "NUM_RUNNERS",
    "USE_SPOT_INSTANCES",
    "AWS_RESOURCE_TAGS",
    "GITHUB_REPOSITORY",
    "GITHUB_TOKEN",
    "GITHUB_SERVER_URL",
    "GITHUB_API_URL",
    "GITHUB_OUTPUT",
    "RUNNER_WAIT_TIMEOUT",
    "RUNNER_REGISTRATION_TOKEN",
    "RUNNER_LABEL",
    "LOG_LEVEL",
)


class FakeClock:
    """Stands in for the ``time`` module: sleep advances monotonic time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def client_error(code: str, message: str = "boom", operation: str = "Op") -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell environment out of RunnerConfig defaults."""
    for key in CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config() -> RunnerConfig:
    """A config that passes validation for both start and stop."""
    return RunnerConfig(
        region="us-east-1",
        image_id="ami-0123456789abcdef0",
        image_name=None,
        instance_type="t3.medium",
        num_instances=1,
        subnet_id="subnet-1234",
        security_group_id="sg-1234",
        iam_role_name="runner-role",
        runner_home_dir=None,
        num_runners=None,
        use_spot_instances=False,
        resource_tags=[],
        github_repository="octo/widgets",
        github_token="ghp_test",
    )


@pytest.fixture
def ec2_client() -> MagicMock:
    """A mock EC2 client."""
    return MagicMock(name="ec2")


@pytest.fixture
def client_factory(ec2_client: MagicMock) -> MagicMock:
    """A client factory that always hands out the same mock client."""
    return MagicMock(name="client_factory", return_value=ec2_client)


@pytest.fixture
def manager(config: RunnerConfig, client_factory: MagicMock) -> EC2RunnerManager:
    """Manager wired to the mock EC2 client."""
    return EC2RunnerManager(config=config, client_factory=client_factory)


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Replace ``time`` in the modules that poll with a deterministic clock."""
    from services.ec2.runner_manager import manager as manager_module
    from services.ec2.service import github as github_module

    clock = FakeClock()
    monkeypatch.setattr(manager_module, "time", clock)
    monkeypatch.setattr(github_module, "time", clock)
    return clock
