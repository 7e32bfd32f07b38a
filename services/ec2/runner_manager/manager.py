"""
EC2 runner instance manager.

Wraps the handful of EC2 calls needed to host ephemeral GitHub Actions
runners: find the newest owned AMI, launch instances, wait for them to
reach the running state and terminate them again.

Example:
    >>> from services.ec2.runner_manager import EC2RunnerManager
    >>> manager = EC2RunnerManager()
    >>> image_id = manager.resolve_image("github-runner-*")
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from services.ec2.runner_manager.config import RunnerConfig
from services.ec2.runner_manager.constants import (
    DEFAULT_POLL_INTERVAL_SEC,
    FAILED_INSTANCE_STATES,
)
from services.ec2.runner_manager.errors import (
    ConfigurationError,
    LaunchError,
    NotFoundError,
    ProviderError,
    TerminationError,
    WaitTimeoutError,
)
from services.ec2.runner_manager.utils import parse_creation_date

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], Any]


def _default_client_factory(region: str) -> Any:
    return boto3.client("ec2", region_name=region)


def _error_details(exc: Exception) -> tuple[str | None, str]:
    """Return (code, message) for a botocore exception."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return error.get("Code"), error.get("Message") or str(exc)
    return None, str(exc)


@dataclass(frozen=True)
class ImageCandidate:
    """
    An owned AMI returned by an image name search.

    Attributes:
        image_id: AMI identifier.
        creation_date: When the image was created (timezone-aware).
        name: Image name.
    """

    image_id: str
    creation_date: datetime
    name: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ImageCandidate:
        """
        Create ImageCandidate from a describe-images entry.

        Args:
            data: One element of the "Images" list.

        Returns:
            ImageCandidate instance.
        """
        return cls(
            image_id=str(data.get("ImageId", "")),
            creation_date=parse_creation_date(data.get("CreationDate")),
            name=data.get("Name", ""),
        )


def select_latest_image(candidates: Sequence[ImageCandidate]) -> ImageCandidate | None:
    """Return the most recently created candidate, or None when there are none."""
    ranked = sorted(candidates, key=lambda c: c.creation_date, reverse=True)
    return ranked[0] if ranked else None


@dataclass(frozen=True)
class LaunchRequest:
    """
    Everything submitted in a single run-instances call.

    Attributes:
        image_id: AMI to boot.
        instance_type: EC2 instance type.
        count: Number of instances; used for both MinCount and MaxCount.
        user_data: Bootstrap script lines, joined and base64-encoded on submit.
        subnet_id: Subnet placement.
        security_group_ids: Security groups to attach.
        iam_role_name: Instance profile name.
        tag_specifications: Tags applied to created resources.
        use_spot: Request one-time spot capacity instead of on-demand.
    """

    image_id: str
    instance_type: str
    count: int
    user_data: tuple[str, ...]
    subnet_id: str | None = None
    security_group_ids: tuple[str, ...] = ()
    iam_role_name: str | None = None
    tag_specifications: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    use_spot: bool = False

    @property
    def encoded_user_data(self) -> str:
        return base64.b64encode("\n".join(self.user_data).encode("utf-8")).decode("ascii")

    def to_params(self) -> dict[str, Any]:
        """Render keyword arguments for ``ec2.run_instances``."""
        params: dict[str, Any] = {
            "ImageId": self.image_id,
            "InstanceType": self.instance_type,
            "MinCount": self.count,
            "MaxCount": self.count,
            "UserData": self.encoded_user_data,
        }
        if self.subnet_id:
            params["SubnetId"] = self.subnet_id
        if self.security_group_ids:
            params["SecurityGroupIds"] = list(self.security_group_ids)
        if self.iam_role_name:
            params["IamInstanceProfile"] = {"Name": self.iam_role_name}
        if self.tag_specifications:
            params["TagSpecifications"] = list(self.tag_specifications)
        if self.use_spot:
            params["InstanceMarketOptions"] = {
                "MarketType": "spot",
                "SpotOptions": {"SpotInstanceType": "one-time"},
            }
        return params


class EC2RunnerManager:
    """
    Manager class for EC2 instances that host CI runners.

    A new EC2 client is built for every operation, so a manager holds no
    connection state between calls.

    Attributes:
        config: Options for this invocation.

    Example:
        >>> manager = EC2RunnerManager(RunnerConfig(region="eu-west-1"))
        >>> ids = manager.run_instances(request)
        >>> manager.wait_until_running(ids)
        >>> manager.terminate_instances(ids)
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Initialize the EC2 runner manager.

        Args:
            config: Invocation options. If not provided, read from the
                environment or .env file.
            client_factory: Callable taking a region and returning an EC2
                client. Defaults to ``boto3.client("ec2", ...)``.

        Raises:
            ConfigurationError: If no AWS region is configured.
        """
        self.config = config or RunnerConfig()
        if not self.config.region:
            raise ConfigurationError(
                "AWS region required. Set AWS_REGION or pass RunnerConfig(region=...)"
            )
        self._client_factory = client_factory or _default_client_factory

        logger.debug("EC2RunnerManager initialized region=%s", self.config.region)

    def _client(self) -> Any:
        return self._client_factory(self.config.region)

    def resolve_image(self, name_pattern: str) -> str:
        """
        Find the newest AMI owned by the caller whose name matches a pattern.

        Args:
            name_pattern: EC2 name filter, wildcards allowed (e.g. "runner-*").

        Returns:
            Image id of the most recently created match.

        Raises:
            NotFoundError: If nothing matches.
            ProviderError: If the describe-images call fails.
        """
        client = self._client()
        try:
            response = client.describe_images(
                Owners=["self"],
                Filters=[{"Name": "name", "Values": [name_pattern]}],
            )
        except (ClientError, BotoCoreError) as exc:
            code, detail = _error_details(exc)
            logger.error("describe_images failed pattern=%s error=%s", name_pattern, detail)
            raise ProviderError("DescribeImages", detail, code) from exc

        candidates = [ImageCandidate.from_api_response(img) for img in response.get("Images", [])]
        latest = select_latest_image(candidates)
        if latest is None:
            logger.error("No images match pattern=%s", name_pattern)
            raise NotFoundError(name_pattern)

        logger.info(
            "Resolved image pattern=%s image_id=%s created=%s (%d candidates)",
            name_pattern,
            latest.image_id,
            latest.creation_date.isoformat(),
            len(candidates),
        )
        return latest.image_id

    def run_instances(self, request: LaunchRequest) -> list[str]:
        """
        Submit a launch request.

        Not idempotent: every call creates a new set of billable instances.

        Args:
            request: The launch request to submit.

        Returns:
            Instance ids in the order EC2 returned them.

        Raises:
            LaunchError: If EC2 rejects the request or the call fails.
        """
        client = self._client()
        logger.info(
            "Launching %d instance(s) image=%s type=%s spot=%s",
            request.count,
            request.image_id,
            request.instance_type,
            request.use_spot,
        )
        try:
            response = client.run_instances(**request.to_params())
        except (ClientError, BotoCoreError) as exc:
            code, detail = _error_details(exc)
            logger.error("AWS EC2 instance failed to start - error: %s", detail)
            raise LaunchError(detail, code) from exc

        instance_ids = [inst["InstanceId"] for inst in response.get("Instances", [])]
        logger.info("AWS EC2 instance(s) %s started", instance_ids)
        return instance_ids

    def get_instance_states(self, instance_ids: Sequence[str], client: Any = None) -> dict[str, str]:
        """
        Look up the state name of each instance.

        Instances EC2 does not know about yet (eventual consistency right
        after launch) are simply absent from the result.

        Raises:
            ProviderError: If the describe-instances call fails.
        """
        client = client or self._client()
        try:
            response = client.describe_instances(InstanceIds=list(instance_ids))
        except ClientError as exc:
            code, detail = _error_details(exc)
            if code == "InvalidInstanceID.NotFound":
                logger.debug("Instances not visible yet: %s", detail)
                return {}
            logger.error("describe_instances failed ids=%s error=%s", instance_ids, detail)
            raise ProviderError("DescribeInstances", detail, code) from exc
        except BotoCoreError as exc:
            logger.error("describe_instances failed ids=%s error=%s", instance_ids, exc)
            raise ProviderError("DescribeInstances", str(exc)) from exc

        states: dict[str, str] = {}
        for reservation in response.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                states[inst["InstanceId"]] = inst.get("State", {}).get("Name", "unknown")
        return states

    def wait_until_running(
        self,
        instance_ids: Sequence[str],
        max_wait_sec: float | None = None,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
    ) -> list[str]:
        """
        Block until every instance reports "running".

        Args:
            instance_ids: Instances to wait for.
            max_wait_sec: Upper bound for the wait. Defaults to the
                configured wait_timeout_sec (120s).
            poll_interval_sec: Delay between state queries.

        Returns:
            The same instance ids, unchanged.

        Raises:
            WaitTimeoutError: If the bound elapses first.
            ProviderError: If a query fails or an instance is shutting
                down, stopping or terminated.
        """
        ids = list(instance_ids)
        if not ids:
            return ids
        timeout = self.config.wait_timeout_sec if max_wait_sec is None else max_wait_sec
        logger.info("Waiting up to %ss for instance(s) %s to be running", timeout, ids)

        client = self._client()
        deadline = time.monotonic() + timeout
        states: dict[str, str] = {}
        while True:
            states = self.get_instance_states(ids, client=client)

            failed = {iid: state for iid, state in states.items() if state in FAILED_INSTANCE_STATES}
            if failed:
                logger.error("AWS EC2 instance(s) %s initialization error: %s", ids, failed)
                raise ProviderError(
                    "DescribeInstances",
                    f"instance(s) will never be running: {failed}",
                    "InstanceNotRunnable",
                )

            if all(states.get(iid) == "running" for iid in ids):
                logger.info("AWS EC2 instance(s) %s up and running", ids)
                return ids

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(poll_interval_sec, remaining))

        pending = {iid: states.get(iid, "unknown") for iid in ids if states.get(iid) != "running"}
        logger.error("AWS EC2 instance(s) %s not running after %ss: %s", ids, timeout, pending)
        raise WaitTimeoutError(
            f"Instance(s) {ids} not running after {timeout}s (pending: {pending})",
            instance_ids=ids,
            timeout_sec=timeout,
        )

    def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        """
        Request termination of instances without waiting for it to finish.

        Raises:
            TerminationError: If EC2 rejects the request. The botocore
                exception is kept as ``__cause__``.
        """
        ids = list(instance_ids)
        client = self._client()
        logger.warning("Terminating instance(s) %s", ids)
        try:
            client.terminate_instances(InstanceIds=ids)
        except (ClientError, BotoCoreError) as exc:
            code, detail = _error_details(exc)
            logger.error("AWS EC2 instance(s) %s termination error: %s", ids, detail)
            raise TerminationError(ids, detail, code) from exc

        logger.info("AWS EC2 instance(s) %s terminated", ids)
