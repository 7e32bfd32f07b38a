from __future__ import annotations

import logging
import time
from typing import Any

import requests

from services.ec2.runner_manager import (
    DEFAULT_GITHUB_API_URL,
    GitHubAPIError,
    WaitTimeoutError,
)

logger = logging.getLogger("ec2_runner_service")

REQUEST_TIMEOUT_SEC = 30


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _request(
    method: str,
    url: str,
    token: str,
    **kwargs: Any,
) -> requests.Response:
    try:
        resp = requests.request(
            method, url, headers=_headers(token), timeout=REQUEST_TIMEOUT_SEC, **kwargs
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.error("GitHub %s %s failed: %s", method, url, exc)
        raise GitHubAPIError(f"GitHub {method} {url} failed: {exc}") from exc
    return resp


def _request_json(method: str, url: str, token: str, **kwargs: Any) -> Any:
    resp = _request(method, url, token, **kwargs)
    try:
        return resp.json()
    except ValueError as exc:
        logger.error("GitHub %s %s returned a non-JSON body: %s", method, url, exc)
        raise GitHubAPIError(f"GitHub {method} {url} returned a non-JSON body") from exc


def get_registration_token(
    repository: str, token: str, api_url: str = DEFAULT_GITHUB_API_URL
) -> str:
    """Create a one-time runner registration token for a repository."""
    url = f"{api_url.rstrip('/')}/repos/{repository}/actions/runners/registration-token"
    data = _request_json("POST", url, token)
    reg_token = data.get("token") if isinstance(data, dict) else None
    if not reg_token:
        raise GitHubAPIError(f"No registration token in response for {repository}")
    logger.info("GitHub registration token received for %s", repository)
    return reg_token


def list_runners(
    repository: str, token: str, api_url: str = DEFAULT_GITHUB_API_URL
) -> list[dict[str, Any]]:
    """Return every self-hosted runner registered to a repository."""
    url = f"{api_url.rstrip('/')}/repos/{repository}/actions/runners"
    runners: list[dict[str, Any]] = []
    page = 1
    while True:
        data = _request_json("GET", url, token, params={"per_page": 100, "page": page})
        batch = data.get("runners", []) if isinstance(data, dict) else []
        runners.extend(batch)
        if len(batch) < 100:
            return runners
        page += 1


def get_runners_by_label(
    repository: str, token: str, label: str, api_url: str = DEFAULT_GITHUB_API_URL
) -> list[dict[str, Any]]:
    """Return runners that carry the given label."""
    return [
        runner
        for runner in list_runners(repository, token, api_url)
        if any(lbl.get("name") == label for lbl in runner.get("labels", []))
    ]


def remove_runners(
    repository: str, token: str, label: str, api_url: str = DEFAULT_GITHUB_API_URL
) -> int:
    """
    Deregister every runner carrying a label.

    Returns:
        Number of runners removed.
    """
    runners = get_runners_by_label(repository, token, label, api_url)
    if not runners:
        logger.info("No GitHub runners with label %s to remove", label)
        return 0
    for runner in runners:
        url = f"{api_url.rstrip('/')}/repos/{repository}/actions/runners/{runner['id']}"
        _request("DELETE", url, token)
        logger.info("GitHub runner %s (id=%s) removed", runner.get("name"), runner["id"])
    return len(runners)


def wait_for_runner_registered(
    repository: str,
    token: str,
    label: str,
    timeout_sec: int = 300,
    poll_interval_sec: int = 10,
    api_url: str = DEFAULT_GITHUB_API_URL,
) -> dict[str, Any]:
    """Wait until a runner with the label is online or raise WaitTimeoutError."""
    deadline = time.monotonic() + timeout_sec
    while True:
        for runner in get_runners_by_label(repository, token, label, api_url):
            if runner.get("status") == "online":
                logger.info("GitHub runner %s is registered and online", runner.get("name"))
                return runner
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        logger.info("Waiting for runner with label %s to register", label)
        time.sleep(min(poll_interval_sec, remaining))
    logger.error("GitHub runner with label %s not registered after %ss", label, timeout_sec)
    raise WaitTimeoutError(
        f"No online runner with label {label} after {timeout_sec}s", timeout_sec=timeout_sec
    )
