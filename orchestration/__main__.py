"""Operator CLI for stack orchestration.

Usage:
    python -m orchestration validate stack.yaml          # check options, print the merged result
    python -m orchestration plan stack.yaml              # print the provisioning order
    python -m orchestration simulate stack.yaml          # full run against the in-memory provider
    python -m orchestration start-build [PROJECT]        # start the application image build
    python -m orchestration ssh-key [-o PATH]            # fetch the bastion SSH private key

The options file holds the same mapping as the ``appstack:stack`` Pulumi
config object (``network``, ``dns``, ``database``, ``bastion``,
``application``). Project, environment and region come from the usual
settings (PROJECT_NAME, ENVIRONMENT, AWS_REGION).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import boto3
import yaml
from botocore.exceptions import ClientError

from common.config import get_settings
from common.errors import ProvisioningError
from components.base import StackContext
from components.bastion import KEY_SECRET
from orchestration.orchestrator import Orchestrator
from providers.memory import InMemoryProvider

logger = logging.getLogger(__name__)


def load_options(path: str) -> dict:
    """Read a YAML options file; an empty file means all defaults."""
    with Path(path).open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def _orchestrator(provider: InMemoryProvider | None = None) -> Orchestrator:
    context = StackContext.from_settings(get_settings())
    return Orchestrator(context, provider or InMemoryProvider())


def validate(path: str) -> int:
    """Validate options and print the merged configuration. Returns exit code."""
    options = _orchestrator().validate(load_options(path))
    print(yaml.safe_dump(options.model_dump(mode="json"), sort_keys=False), end="")
    return 0


def plan(path: str) -> int:
    """Print the provisioning plan. Returns exit code."""
    orchestrator = _orchestrator()
    orchestrator.validate(load_options(path))
    provisioning_plan = orchestrator.plan()
    for step, kind in enumerate(provisioning_plan, start=1):
        producers = ", ".join(e.producer for e in provisioning_plan.producers_of(kind)) or "-"
        print(f"{step}. {kind:<12} after: {producers}")
    return 0


def simulate(path: str, zones: list[str] | None = None) -> int:
    """Run the whole orchestration in memory and print the outputs. Returns exit code."""
    data = load_options(path)
    if not zones:
        # Pretend the configured domain is delegated to the account
        domain = (data.get("dns") or {}).get("domain")
        zones = [domain] if domain else []

    provider = InMemoryProvider(hosted_zones=zones)
    orchestrator = _orchestrator(provider)
    output_set = orchestrator.run(data)

    logger.info(f"Simulated {len(provider.resources)} resource(s)")
    print(json.dumps(output_set.as_dict(), indent=2, default=str))
    return 0


def start_build(project: str | None = None) -> int:
    """Start the CodeBuild project that builds the application image. Returns exit code."""
    settings = get_settings()
    project = project or StackContext.from_settings(settings).resource_name("image-build")

    client = boto3.client("codebuild", region_name=settings.aws_region)
    try:
        response = client.start_build(projectName=project)
    except ClientError as e:
        logger.error(
            "Failed to start image build",
            extra={"project": project, "error": str(e)},
        )
        return 1

    build_id = response["build"]["id"]
    logger.info("Image build started", extra={"project": project, "build_id": build_id})
    print(build_id)
    return 0


def ssh_key(output: str | None = None) -> int:
    """Fetch the bastion's SSH private key from Secrets Manager. Returns exit code."""
    settings = get_settings()
    secret_name = StackContext.from_settings(settings).secret_name(KEY_SECRET)

    client = boto3.client("secretsmanager", region_name=settings.aws_region)
    try:
        response = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        logger.error(
            "Failed to read bastion SSH key",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        return 1

    private_key = json.loads(response["SecretString"]).get("private_key")
    if not private_key:
        logger.error("Secret holds no private key", extra={"secret_name": secret_name})
        return 1

    if output is None:
        print(private_key, end="" if private_key.endswith("\n") else "\n")
        return 0

    path = Path(output)
    path.write_text(private_key, encoding="utf-8")
    path.chmod(0o600)
    logger.info("Bastion SSH key written", extra={"path": str(path)})
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.resolved_log_level, format="%(levelname)s: %(message)s")

    parser = argparse.ArgumentParser(prog="python -m orchestration", description="Stack orchestration")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate stack options")
    validate_parser.add_argument("options", help="YAML options file")

    plan_parser = subparsers.add_parser("plan", help="Print the provisioning plan")
    plan_parser.add_argument("options", help="YAML options file")

    simulate_parser = subparsers.add_parser("simulate", help="Run against the in-memory provider")
    simulate_parser.add_argument("options", help="YAML options file")
    simulate_parser.add_argument(
        "--zone",
        action="append",
        dest="zones",
        metavar="DOMAIN",
        help="Hosted zone present in the simulated account (repeatable; default: the configured domain)",
    )

    build_parser = subparsers.add_parser("start-build", help="Start the application image build")
    build_parser.add_argument("project", nargs="?", help="CodeBuild project (default: <project>-<env>-image-build)")

    key_parser = subparsers.add_parser("ssh-key", help="Fetch the bastion SSH private key")
    key_parser.add_argument("-o", "--output", metavar="PATH", help="Write the key to PATH (mode 0600) instead of stdout")

    args = parser.parse_args(argv)

    try:
        if args.command == "validate":
            return validate(args.options)
        if args.command == "plan":
            return plan(args.options)
        if args.command == "simulate":
            return simulate(args.options, args.zones)
        if args.command == "ssh-key":
            return ssh_key(args.output)
        return start_build(args.project)
    except ProvisioningError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Cannot read options: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
