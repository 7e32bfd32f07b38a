from __future__ import annotations

from services.ec2.runner_manager.config import RunnerConfig
from services.ec2.runner_manager.constants import (
    DEFAULT_GITHUB_API_URL,
    DEFAULT_GITHUB_SERVER_URL,
    DEFAULT_INSTANCE_TYPE,
    DEFAULT_NUM_INSTANCES,
    DEFAULT_POLL_INTERVAL_SEC,
    DEFAULT_WAIT_TIMEOUT_SEC,
    MAX_RUNNERS_PER_INSTANCE,
)
from services.ec2.runner_manager.env import get_env, get_env_bool, get_env_int, get_env_json
from services.ec2.runner_manager.errors import (
    ConfigurationError,
    EC2RunnerError,
    GitHubAPIError,
    LaunchError,
    NotFoundError,
    ProviderError,
    TerminationError,
    WaitTimeoutError,
)
from services.ec2.runner_manager.manager import (
    EC2RunnerManager,
    ImageCandidate,
    LaunchRequest,
    select_latest_image,
)
from services.ec2.runner_manager.utils import (
    generate_label,
    parse_creation_date,
    parse_instance_ids,
)

__all__ = [
    "DEFAULT_GITHUB_API_URL",
    "DEFAULT_GITHUB_SERVER_URL",
    "DEFAULT_INSTANCE_TYPE",
    "DEFAULT_NUM_INSTANCES",
    "DEFAULT_POLL_INTERVAL_SEC",
    "DEFAULT_WAIT_TIMEOUT_SEC",
    "MAX_RUNNERS_PER_INSTANCE",
    "get_env",
    "get_env_bool",
    "get_env_int",
    "get_env_json",
    "generate_label",
    "parse_creation_date",
    "parse_instance_ids",
    "RunnerConfig",
    "EC2RunnerManager",
    "ImageCandidate",
    "LaunchRequest",
    "select_latest_image",
    "EC2RunnerError",
    "ConfigurationError",
    "NotFoundError",
    "ProviderError",
    "LaunchError",
    "TerminationError",
    "WaitTimeoutError",
    "GitHubAPIError",
]
