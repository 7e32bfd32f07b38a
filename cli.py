#!/usr/bin/env python3
"""
EC2 Runner CLI

Command-line interface for starting and stopping ephemeral EC2 instances
that host GitHub Actions self-hosted runners.
"""

import argparse
import json
import logging
import os
import sys
from typing import Optional

from services.ec2.runner_manager import (
    EC2RunnerError,
    EC2RunnerManager,
    RunnerConfig,
    get_env,
    parse_instance_ids,
)
from services.ec2.service import build_bootstrap_script, start_runners, stop_runners


def get_manager(region: Optional[str] = None) -> EC2RunnerManager:
    """Get manager instance bound to the configured (or given) region"""
    config = RunnerConfig()
    if region:
        config.region = region
    return EC2RunnerManager(config=config)


def write_github_output(values: dict) -> None:
    """Append step outputs to $GITHUB_OUTPUT when running inside Actions"""
    output_path = os.environ.get("GITHUB_OUTPUT")
    if not output_path:
        return
    with open(output_path, "a", encoding="utf-8") as f:
        for key, value in values.items():
            f.write(f"{key}={value}\n")


def cmd_start(args):
    """Launch runner instances and wait until they are running"""
    manager = get_manager(args.region)
    if args.num_runners is not None:
        manager.config.num_runners = args.num_runners
    if args.spot:
        manager.config.use_spot_instances = True

    result = start_runners(
        manager,
        label=args.label,
        registration_token=args.registration_token or get_env("RUNNER_REGISTRATION_TOKEN"),
        wait_for_registration=args.wait_for_registration,
        registration_timeout_sec=args.registration_timeout,
    )

    write_github_output(
        {"label": result.label, "ec2-instance-id": json.dumps(result.instance_ids)}
    )

    if args.json:
        print(json.dumps({"label": result.label, "instance_ids": result.instance_ids}, indent=2))
    else:
        print(f"Label: {result.label}")
        print(f"Instances: {', '.join(result.instance_ids)}")


def cmd_stop(args):
    """Terminate runner instances"""
    raw_ids = args.instance_ids if args.instance_ids is not None else get_env("EC2_INSTANCE_ID")
    try:
        instance_ids = parse_instance_ids(raw_ids)
    except ValueError as e:
        print(f"Error: invalid instance ids: {e}", file=sys.stderr)
        sys.exit(1)

    manager = get_manager(args.region)
    stop_runners(manager, instance_ids, label=args.label or get_env("RUNNER_LABEL"))

    if args.json:
        print(json.dumps({"terminated": instance_ids}, indent=2))
    else:
        print(f"Termination requested for: {', '.join(instance_ids)}")


def cmd_resolve_image(args):
    """Print the newest owned image matching a name pattern"""
    manager = get_manager(args.region)
    image_id = manager.resolve_image(args.pattern)

    if args.json:
        print(json.dumps({"pattern": args.pattern, "image_id": image_id}, indent=2))
    else:
        print(image_id)


def cmd_script(args):
    """Print the bootstrap script without launching anything"""
    config = RunnerConfig()
    repository = args.repository or config.github_repository
    if not repository:
        print("Error: --repository or GITHUB_REPOSITORY is required", file=sys.stderr)
        sys.exit(1)
    config.github_repository = repository

    lines = build_bootstrap_script(
        args.registration_token,
        args.label,
        repository_url=config.repository_url,
        runner_count=args.num_runners if args.num_runners is not None else config.num_runners,
        home_dir=args.home_dir or config.runner_home_dir,
    )

    if args.json:
        print(json.dumps(lines, indent=2))
    else:
        print("\n".join(lines))


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Ephemeral EC2 runners for GitHub Actions",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options
    parser.add_argument(
        "--region", "-r",
        help="AWS region (default: from .env or AWS_REGION)"
    )
    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output in JSON format"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO or LOG_LEVEL)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Start command
    start_parser = subparsers.add_parser("start", help="Launch runner instances")
    start_parser.add_argument("--label", "-l", help="Runner label (default: random)")
    start_parser.add_argument("--registration-token", "-t", help="Runner registration token (default: fetched with GITHUB_TOKEN)")
    start_parser.add_argument("--num-runners", "-n", type=int, help="Runners per instance (capped at 32)")
    start_parser.add_argument("--spot", action="store_true", help="Use one-time spot instances")
    start_parser.add_argument("--wait-for-registration", action="store_true", help="Wait until the runner is online in GitHub")
    start_parser.add_argument("--registration-timeout", type=int, default=300, help="Registration wait in seconds (default: 300)")
    start_parser.set_defaults(func=cmd_start)

    # Stop command
    stop_parser = subparsers.add_parser("stop", help="Terminate runner instances")
    stop_parser.add_argument("--instance-ids", "-i", help='JSON list or single id (default: EC2_INSTANCE_ID)')
    stop_parser.add_argument("--label", "-l", help="Remove GitHub runners with this label after termination")
    stop_parser.set_defaults(func=cmd_stop)

    # Resolve image command
    image_parser = subparsers.add_parser("resolve-image", help="Find the newest owned image matching a name")
    image_parser.add_argument("pattern", help="Image name pattern (wildcards allowed)")
    image_parser.set_defaults(func=cmd_resolve_image)

    # Script command
    script_parser = subparsers.add_parser("script", help="Print the bootstrap script")
    script_parser.add_argument("--registration-token", "-t", required=True, help="Runner registration token")
    script_parser.add_argument("--label", "-l", required=True, help="Runner label")
    script_parser.add_argument("--repository", help="owner/repo (default: GITHUB_REPOSITORY)")
    script_parser.add_argument("--num-runners", "-n", type=int, help="Runners per instance (capped at 32)")
    script_parser.add_argument("--home-dir", help="Pre-installed runner directory in the image")
    script_parser.set_defaults(func=cmd_script)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except EC2RunnerError as e:
        print(f"::error::{e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
