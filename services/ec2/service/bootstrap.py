from __future__ import annotations

import logging
import shlex

from services.ec2.runner_manager import MAX_RUNNERS_PER_INSTANCE
from services.ec2.runner_manager.constants import RUNNER_DOWNLOAD_URL, RUNNER_RELEASES_URL

logger = logging.getLogger("ec2_runner_service")

RUNNER_ENV_EXPORTS = (
    "export RUNNER_ALLOW_RUNASROOT=1",
    "export DOTNET_SYSTEM_GLOBALIZATION_INVARIANT=1",
)


def _download_cmds() -> list[str]:
    return [
        "mkdir actions-runner && cd actions-runner",
        "export ARCH=$(uname -m | sed 's/x86_64/x64/g; s/aarch64/arm64/g')",
        f"export RUNNER_VERSION=$(curl --silent \"{RUNNER_RELEASES_URL}\" | jq -r '.tag_name[1:]')",
        "curl -o actions-runner.tar.gz -L "
        f"{RUNNER_DOWNLOAD_URL}/v${{RUNNER_VERSION}}/actions-runner-linux-${{ARCH}}-${{RUNNER_VERSION}}.tar.gz",
    ]


def _config_cmd(
    repository_url: str, registration_token: str, label: str, name: str | None = None
) -> str:
    # name is left unquoted so $(hostname) expands on the instance
    parts = [
        "./config.sh",
        f"--url {shlex.quote(repository_url)}",
        f"--token {shlex.quote(registration_token)}",
        f"--labels {shlex.quote(label)}",
    ]
    if name:
        parts.append(f"--name {name}")
    parts.append("--unattended")
    return " ".join(parts)


def build_bootstrap_script(
    registration_token: str,
    label: str,
    repository_url: str,
    runner_count: int | None = None,
    home_dir: str | None = None,
) -> list[str]:
    """
    Build the user-data script that registers runners on first boot.

    The script runs as root. Three shapes are produced:

    - home_dir set: the AMI already has the runner installed there, so
      cd into it, register once and run in the foreground.
    - runner_count unset or 1: download the latest runner release,
      register once and run in the foreground.
    - runner_count > 1: download once, then unpack, register and install
      a service per runner in numbered directories 1..N. N is capped at
      MAX_RUNNERS_PER_INSTANCE; extra runners are dropped silently.

    Args:
        registration_token: One-time runner registration token.
        label: Label the runner(s) register with.
        repository_url: Repository URL, e.g. "https://github.com/owner/repo".
        runner_count: Runners to register on the instance.
        home_dir: Pre-installed runner directory inside the image.

    Returns:
        Shell statements, one per line, starting with a shebang.
    """
    if home_dir:
        logger.info("Start single runner in %s", home_dir)
        return [
            "#!/bin/bash",
            f"cd {shlex.quote(home_dir)}",
            *RUNNER_ENV_EXPORTS,
            _config_cmd(repository_url, registration_token, label),
            "./run.sh",
        ]

    safe_label = shlex.quote(label)
    if not runner_count or runner_count <= 1:
        logger.info("Download and start single runner")
        return [
            "#!/bin/bash",
            *_download_cmds(),
            "tar xzf actions-runner.tar.gz",
            *RUNNER_ENV_EXPORTS,
            _config_cmd(repository_url, registration_token, label, f"$(hostname)-{safe_label}"),
            "./run.sh",
        ]

    count = min(runner_count, MAX_RUNNERS_PER_INSTANCE)
    if count < runner_count:
        logger.debug(
            "Requested %d runners, registering %d (per-instance cap)", runner_count, count
        )
    logger.info("Download and start %d runners", count)

    lines = ["#!/bin/bash", *_download_cmds(), *RUNNER_ENV_EXPORTS]
    for i in range(1, count + 1):
        lines.extend(
            [
                f"mkdir {i} && cd {i}",
                "tar xzf ../actions-runner.tar.gz",
                _config_cmd(
                    repository_url, registration_token, label, f"$(hostname)-{safe_label}-{i}"
                ),
                "mkdir _work",
                "./svc.sh install && ./svc.sh start",
                "cd ..",
            ]
        )
    return lines
