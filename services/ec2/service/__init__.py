from __future__ import annotations

from services.ec2.runner_manager import EC2RunnerManager, RunnerConfig
from services.ec2.service.bootstrap import build_bootstrap_script
from services.ec2.service.github import (
    get_registration_token,
    get_runners_by_label,
    list_runners,
    remove_runners,
    wait_for_runner_registered,
)
from services.ec2.service.types import LaunchResult, StartResult
from services.ec2.service.workflow import (
    build_launch_request,
    launch_instances,
    start_runners,
    stop_runners,
)

__all__ = [
    "EC2RunnerManager",
    "RunnerConfig",
    "LaunchResult",
    "StartResult",
    "build_bootstrap_script",
    "build_launch_request",
    "get_registration_token",
    "get_runners_by_label",
    "list_runners",
    "remove_runners",
    "wait_for_runner_registered",
    "launch_instances",
    "start_runners",
    "stop_runners",
]
