"""Tests for EC2RunnerManager.

All EC2 calls go to a MagicMock client; no AWS account required.
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import EndpointConnectionError

from conftest import client_error
from services.ec2.runner_manager import (
    ConfigurationError,
    EC2RunnerManager,
    ImageCandidate,
    LaunchError,
    LaunchRequest,
    NotFoundError,
    ProviderError,
    RunnerConfig,
    TerminationError,
    WaitTimeoutError,
    select_latest_image,
)


def _describe_response(states: dict[str, str]) -> dict:
    return {
        "Reservations": [
            {
                "Instances": [
                    {"InstanceId": iid, "State": {"Name": state}}
                    for iid, state in states.items()
                ]
            }
        ]
    }


def _request(**overrides) -> LaunchRequest:
    values = dict(
        image_id="ami-1",
        instance_type="t3.medium",
        count=2,
        user_data=("#!/bin/bash", "./run.sh"),
        subnet_id="subnet-1",
        security_group_ids=("sg-1",),
        iam_role_name="runner-role",
    )
    values.update(overrides)
    return LaunchRequest(**values)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestManagerInit:
    """Tests for EC2RunnerManager construction."""

    def test_missing_region_raises(self):
        with pytest.raises(ConfigurationError):
            EC2RunnerManager(config=RunnerConfig(region=None))

    def test_region_read_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        assert EC2RunnerManager().config.region == "eu-west-1"

    def test_default_factory_uses_boto3(self, config):
        with patch("services.ec2.runner_manager.manager.boto3") as boto3_mock:
            EC2RunnerManager(config=config)._client()
        boto3_mock.client.assert_called_once_with("ec2", region_name="us-east-1")

    def test_new_client_per_operation(self, manager, ec2_client, client_factory):
        ec2_client.describe_images.return_value = {
            "Images": [{"ImageId": "ami-1", "CreationDate": "2024-01-01T00:00:00.000Z"}]
        }
        ec2_client.run_instances.return_value = {"Instances": [{"InstanceId": "i-1"}]}

        manager.resolve_image("runner-*")
        manager.run_instances(_request(count=1))
        manager.terminate_instances(["i-1"])

        assert client_factory.call_count == 3
        client_factory.assert_called_with("us-east-1")


# ---------------------------------------------------------------------------
# Image resolution
# ---------------------------------------------------------------------------


class TestResolveImage:
    """Tests for resolve_image and select_latest_image."""

    def test_queries_owned_images_by_name(self, manager, ec2_client):
        ec2_client.describe_images.return_value = {
            "Images": [{"ImageId": "ami-1", "CreationDate": "2024-01-01T00:00:00.000Z"}]
        }
        manager.resolve_image("runner-*")
        ec2_client.describe_images.assert_called_once_with(
            Owners=["self"], Filters=[{"Name": "name", "Values": ["runner-*"]}]
        )

    def test_returns_most_recent(self, manager, ec2_client):
        ec2_client.describe_images.return_value = {
            "Images": [
                {"ImageId": "ami-old", "CreationDate": "2023-06-01T10:00:00.000Z"},
                {"ImageId": "ami-new", "CreationDate": "2024-03-15T08:30:00.000Z"},
                {"ImageId": "ami-mid", "CreationDate": "2024-01-20T23:59:59.000Z"},
            ]
        }
        assert manager.resolve_image("runner-*") == "ami-new"

    def test_malformed_date_loses_to_valid_dates(self, manager, ec2_client):
        ec2_client.describe_images.return_value = {
            "Images": [
                {"ImageId": "ami-bad", "CreationDate": "not-a-date"},
                {"ImageId": "ami-good", "CreationDate": "2024-03-15T08:30:00.000Z"},
            ]
        }
        assert manager.resolve_image("runner-*") == "ami-good"

    def test_no_match_raises_not_found(self, manager, ec2_client):
        ec2_client.describe_images.return_value = {"Images": []}
        with pytest.raises(NotFoundError) as exc_info:
            manager.resolve_image("missing-*")
        assert exc_info.value.name_pattern == "missing-*"

    def test_api_failure_raises_provider_error(self, manager, ec2_client):
        ec2_client.describe_images.side_effect = client_error("UnauthorizedOperation", "denied")
        with pytest.raises(ProviderError) as exc_info:
            manager.resolve_image("runner-*")
        assert exc_info.value.code == "UnauthorizedOperation"
        assert exc_info.value.operation == "DescribeImages"

    def test_select_latest_handles_datetime_values(self):
        candidates = [
            ImageCandidate.from_api_response(
                {"ImageId": "ami-a", "CreationDate": datetime(2024, 1, 1, tzinfo=timezone.utc)}
            ),
            ImageCandidate.from_api_response(
                {"ImageId": "ami-b", "CreationDate": "2024-02-01T00:00:00.000Z"}
            ),
        ]
        assert select_latest_image(candidates).image_id == "ami-b"

    def test_select_latest_empty(self):
        assert select_latest_image([]) is None


# ---------------------------------------------------------------------------
# Launch request rendering
# ---------------------------------------------------------------------------


class TestLaunchRequest:
    """Tests for LaunchRequest.to_params."""

    def test_count_bounds_equal(self):
        params = _request(count=3).to_params()
        assert params["MinCount"] == params["MaxCount"] == 3

    def test_user_data_is_base64_of_joined_lines(self):
        params = _request().to_params()
        assert base64.b64decode(params["UserData"]).decode() == "#!/bin/bash\n./run.sh"

    def test_placement_identity_and_tags(self):
        tags = ({"ResourceType": "instance", "Tags": [{"Key": "team", "Value": "ci"}]},)
        params = _request(tag_specifications=tags).to_params()
        assert params["SubnetId"] == "subnet-1"
        assert params["SecurityGroupIds"] == ["sg-1"]
        assert params["IamInstanceProfile"] == {"Name": "runner-role"}
        assert params["TagSpecifications"] == list(tags)

    def test_spot_adds_one_time_market_options(self):
        params = _request(use_spot=True).to_params()
        assert params["InstanceMarketOptions"] == {
            "MarketType": "spot",
            "SpotOptions": {"SpotInstanceType": "one-time"},
        }

    def test_on_demand_has_no_market_options(self):
        params = _request(use_spot=False).to_params()
        assert "InstanceMarketOptions" not in params

    def test_optional_fields_omitted(self):
        params = _request(subnet_id=None, security_group_ids=(), iam_role_name=None).to_params()
        assert "SubnetId" not in params
        assert "SecurityGroupIds" not in params
        assert "IamInstanceProfile" not in params
        assert "TagSpecifications" not in params


# ---------------------------------------------------------------------------
# run_instances
# ---------------------------------------------------------------------------


class TestRunInstances:
    """Tests for run_instances."""

    def test_returns_ids_in_order(self, manager, ec2_client):
        ec2_client.run_instances.return_value = {
            "Instances": [{"InstanceId": "i-b"}, {"InstanceId": "i-a"}]
        }
        assert manager.run_instances(_request()) == ["i-b", "i-a"]

    def test_submits_rendered_params(self, manager, ec2_client):
        ec2_client.run_instances.return_value = {"Instances": []}
        request = _request(use_spot=True)
        manager.run_instances(request)
        ec2_client.run_instances.assert_called_once_with(**request.to_params())

    def test_client_error_raises_launch_error(self, manager, ec2_client):
        original = client_error("InsufficientInstanceCapacity", "no capacity", "RunInstances")
        ec2_client.run_instances.side_effect = original
        with pytest.raises(LaunchError) as exc_info:
            manager.run_instances(_request())
        assert exc_info.value.code == "InsufficientInstanceCapacity"
        assert exc_info.value.detail == "no capacity"
        assert exc_info.value.__cause__ is original

    def test_transport_error_raises_launch_error(self, manager, ec2_client):
        ec2_client.run_instances.side_effect = EndpointConnectionError(endpoint_url="https://ec2")
        with pytest.raises(LaunchError):
            manager.run_instances(_request())

    def test_launch_error_is_provider_error(self, manager, ec2_client):
        ec2_client.run_instances.side_effect = client_error("Boom")
        with pytest.raises(ProviderError):
            manager.run_instances(_request())


# ---------------------------------------------------------------------------
# wait_until_running
# ---------------------------------------------------------------------------


class TestWaitUntilRunning:
    """Tests for wait_until_running."""

    def test_returns_ids_unchanged_when_running(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.side_effect = [
            _describe_response({"i-1": "pending", "i-2": "pending"}),
            _describe_response({"i-1": "running", "i-2": "pending"}),
            _describe_response({"i-1": "running", "i-2": "running"}),
        ]
        ids = ["i-1", "i-2"]
        assert manager.wait_until_running(ids) == ids
        assert ec2_client.describe_instances.call_count == 3
        ec2_client.describe_instances.assert_called_with(InstanceIds=ids)

    def test_never_running_times_out_after_bound(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.return_value = _describe_response({"i-1": "pending"})
        with pytest.raises(TimeoutError) as exc_info:
            manager.wait_until_running(["i-1"])
        assert isinstance(exc_info.value, WaitTimeoutError)
        assert exc_info.value.timeout_sec == 120
        assert fake_clock.now == pytest.approx(120)

    def test_custom_bound(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.return_value = _describe_response({"i-1": "pending"})
        with pytest.raises(WaitTimeoutError):
            manager.wait_until_running(["i-1"], max_wait_sec=12, poll_interval_sec=5)
        assert fake_clock.sleeps == [5, 5, 2]

    def test_partial_success_is_a_timeout(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.return_value = _describe_response(
            {"i-1": "running", "i-2": "pending"}
        )
        with pytest.raises(WaitTimeoutError) as exc_info:
            manager.wait_until_running(["i-1", "i-2"])
        assert exc_info.value.instance_ids == ["i-1", "i-2"]

    def test_not_found_right_after_launch_keeps_polling(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.side_effect = [
            client_error("InvalidInstanceID.NotFound"),
            _describe_response({"i-1": "running"}),
        ]
        assert manager.wait_until_running(["i-1"]) == ["i-1"]

    def test_other_query_failure_raises_provider_error(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.side_effect = client_error("RequestLimitExceeded")
        with pytest.raises(ProviderError) as exc_info:
            manager.wait_until_running(["i-1"])
        assert not isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.code == "RequestLimitExceeded"

    def test_terminated_instance_fails_fast(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.return_value = _describe_response({"i-1": "terminated"})
        with pytest.raises(ProviderError):
            manager.wait_until_running(["i-1"])
        assert fake_clock.sleeps == []

    @pytest.mark.parametrize("state", ["shutting-down", "stopping"])
    def test_other_failed_states_fail_fast(self, manager, ec2_client, fake_clock, state):
        ec2_client.describe_instances.return_value = _describe_response({"i-1": state})
        with pytest.raises(ProviderError):
            manager.wait_until_running(["i-1"])
        assert fake_clock.sleeps == []

    def test_stopped_instance_keeps_polling(self, manager, ec2_client, fake_clock):
        ec2_client.describe_instances.side_effect = [
            _describe_response({"i-1": "stopped"}),
            _describe_response({"i-1": "pending"}),
            _describe_response({"i-1": "running"}),
        ]
        assert manager.wait_until_running(["i-1"]) == ["i-1"]
        assert fake_clock.sleeps == [5, 5]

    def test_empty_id_list_returns_immediately(self, manager, ec2_client):
        assert manager.wait_until_running([]) == []
        ec2_client.describe_instances.assert_not_called()

    def test_bound_defaults_to_config(self, config, client_factory, ec2_client, fake_clock):
        config.wait_timeout_sec = 30
        manager = EC2RunnerManager(config=config, client_factory=client_factory)
        ec2_client.describe_instances.return_value = _describe_response({"i-1": "pending"})
        with pytest.raises(WaitTimeoutError):
            manager.wait_until_running(["i-1"])
        assert fake_clock.now == pytest.approx(30)


# ---------------------------------------------------------------------------
# terminate_instances
# ---------------------------------------------------------------------------


class TestTerminateInstances:
    """Tests for terminate_instances."""

    def test_success_sends_one_request(self, manager, ec2_client):
        ec2_client.terminate_instances.return_value = {"TerminatingInstances": []}
        assert manager.terminate_instances(["i-1", "i-2"]) is None
        ec2_client.terminate_instances.assert_called_once_with(InstanceIds=["i-1", "i-2"])
        ec2_client.describe_instances.assert_not_called()

    def test_error_propagates_with_provider_exception(self, manager, ec2_client):
        original = client_error("InvalidInstanceID.Malformed", "bad id", "TerminateInstances")
        ec2_client.terminate_instances.side_effect = original
        with pytest.raises(TerminationError) as exc_info:
            manager.terminate_instances(["bogus"])
        assert exc_info.value.__cause__ is original
        assert exc_info.value.instance_ids == ["bogus"]
        assert exc_info.value.code == "InvalidInstanceID.Malformed"
        assert ec2_client.terminate_instances.call_count == 1

    def test_accepts_any_sequence(self, manager, ec2_client):
        manager.terminate_instances(("i-1",))
        ec2_client.terminate_instances.assert_called_once_with(InstanceIds=["i-1"])


def test_client_factory_receives_region():
    factory = MagicMock()
    EC2RunnerManager(config=RunnerConfig(region="ap-south-1"), client_factory=factory)._client()
    factory.assert_called_once_with("ap-south-1")
