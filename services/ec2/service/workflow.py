from __future__ import annotations

import logging
from typing import Sequence

from services.ec2.runner_manager import (
    ConfigurationError,
    EC2RunnerManager,
    LaunchRequest,
    RunnerConfig,
    generate_label,
)
from services.ec2.service.bootstrap import build_bootstrap_script
from services.ec2.service.github import (
    get_registration_token,
    remove_runners,
    wait_for_runner_registered,
)
from services.ec2.service.types import LaunchResult, StartResult

logger = logging.getLogger("ec2_runner_service")


def _require_valid(config: RunnerConfig, mode: str) -> None:
    errors = config.validate(mode)
    if errors:
        for error in errors:
            logger.error("Invalid configuration: %s", error)
        raise ConfigurationError("; ".join(errors))


def build_launch_request(
    config: RunnerConfig, image_id: str, label: str, registration_token: str
) -> LaunchRequest:
    """Assemble the run-instances request for a label and registration token."""
    script = build_bootstrap_script(
        registration_token,
        label,
        repository_url=config.repository_url,
        runner_count=config.num_runners,
        home_dir=config.runner_home_dir,
    )
    return LaunchRequest(
        image_id=image_id,
        instance_type=config.instance_type,
        count=config.num_instances,
        user_data=tuple(script),
        subnet_id=config.subnet_id,
        security_group_ids=(config.security_group_id,) if config.security_group_id else (),
        iam_role_name=config.iam_role_name,
        tag_specifications=tuple(config.tag_specifications),
        use_spot=config.use_spot_instances,
    )


def launch_instances(
    manager: EC2RunnerManager,
    label: str,
    registration_token: str,
    validate: bool = True,
) -> LaunchResult:
    """
    Launch runner instances as described by the manager's config.

    The image comes from EC2_IMAGE_NAME (newest owned match) when set,
    otherwise from EC2_IMAGE_ID. Pass validate=False when the caller has
    already validated the config.
    """
    config = manager.config
    if validate:
        _require_valid(config, "start")

    if config.image_name:
        image_id = manager.resolve_image(config.image_name)
    else:
        image_id = config.image_id

    request = build_launch_request(config, image_id, label, registration_token)
    instance_ids = manager.run_instances(request)
    return LaunchResult(
        instance_ids=instance_ids, image_id=image_id, request_params=request.to_params()
    )


def start_runners(
    manager: EC2RunnerManager,
    label: str | None = None,
    registration_token: str | None = None,
    wait_for_registration: bool = False,
    registration_timeout_sec: int = 300,
) -> StartResult:
    """
    Launch runner instances and wait until they are running.

    Args:
        manager: Manager bound to the invocation's config.
        label: Runner label. A random 5-character label is generated if omitted.
        registration_token: Runner registration token. Fetched from GitHub
            with the configured GITHUB_TOKEN if omitted.
        wait_for_registration: Also wait for a runner with the label to
            come online in GitHub.
        registration_timeout_sec: Bound for the registration wait.

    Returns:
        The label and the launched instance ids.
    """
    config = manager.config
    label = label or generate_label()

    if registration_token is None and not config.github_token:
        raise ConfigurationError(
            "A registration token or GITHUB_TOKEN is required to start runners"
        )
    _require_valid(config, "start")

    if registration_token is None:
        registration_token = get_registration_token(
            config.github_repository, config.github_token, config.github_api_url
        )

    launched = launch_instances(manager, label, registration_token, validate=False)
    logger.info("label=%s instance_ids=%s", label, launched.instance_ids)
    manager.wait_until_running(launched.instance_ids)

    if wait_for_registration:
        if not config.github_token:
            raise ConfigurationError("GITHUB_TOKEN is required to wait for runner registration")
        wait_for_runner_registered(
            config.github_repository,
            config.github_token,
            label,
            timeout_sec=registration_timeout_sec,
            api_url=config.github_api_url,
        )

    return StartResult(label=label, instance_ids=launched.instance_ids)


def stop_runners(
    manager: EC2RunnerManager,
    instance_ids: Sequence[str],
    label: str | None = None,
) -> None:
    """
    Terminate runner instances and, given a label, deregister their runners.

    Runner removal needs GITHUB_TOKEN and GITHUB_REPOSITORY; without them
    only the instances are terminated.
    """
    config = manager.config
    _require_valid(config, "stop")
    ids = list(instance_ids)
    if not ids:
        raise ConfigurationError("No instance ids given to terminate")

    manager.terminate_instances(ids)

    if not label:
        return
    if not (config.github_token and config.github_repository):
        logger.warning("Skipping runner removal for label %s: GitHub not configured", label)
        return
    remove_runners(config.github_repository, config.github_token, label, config.github_api_url)
