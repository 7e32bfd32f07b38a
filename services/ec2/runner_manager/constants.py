from __future__ import annotations

DEFAULT_INSTANCE_TYPE = "t3.medium"
DEFAULT_NUM_INSTANCES = 1
DEFAULT_WAIT_TIMEOUT_SEC = 120
DEFAULT_POLL_INTERVAL_SEC = 5
DEFAULT_GITHUB_SERVER_URL = "https://github.com"
DEFAULT_GITHUB_API_URL = "https://api.github.com"

# Hard limit on runners registered per instance; extra requested runners are dropped
MAX_RUNNERS_PER_INSTANCE = 32

RUNNER_RELEASES_URL = "https://api.github.com/repos/actions/runner/releases/latest"
RUNNER_DOWNLOAD_URL = "https://github.com/actions/runner/releases/download"

# States the boto3 instance_running waiter fails on
FAILED_INSTANCE_STATES = frozenset({"shutting-down", "terminated", "stopping"})

TAGGED_RESOURCE_TYPES: tuple[str, ...] = ("instance", "volume")
