"""CLI entrypoint for credential-rotator."""
import sys
import json
import argparse
import logging
from dataclasses import asdict, replace
from pathlib import Path

from .validators import validate_secret_id, validate_step, validate_token

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int) -> None:
    """Log to stderr: WARNING by default, INFO with -v, DEBUG with -vv."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def cmd_version(args):
    """Show version information."""
    print(f"credential-rotator {VERSION}")


def cmd_config_show(args):
    """Show the resolved config file path and effective settings."""
    from credential_rotator.rotation.domains.config_loader import (
        default_config_path,
        get_config_path,
        load_config,
    )
    from credential_rotator.rotation.domains.errors import ConfigError

    try:
        config_path, source = get_config_path(args.config)
    except ConfigError:
        print(f"Config path: {args.config or default_config_path()}")
        print("Source: (file not found)")
        sys.exit(1)

    print(f"Config path: {config_path}")
    print(f"Source: {source}")
    settings = load_config(config_path)
    settings_dict = asdict(settings)
    settings_dict.pop("source", None)
    print(json.dumps(settings_dict, indent=2, default=list))


def cmd_config_validate(args):
    """Load and validate the config file."""
    from credential_rotator.rotation.domains.config_loader import load_config
    from credential_rotator.rotation.domains.errors import ConfigError

    try:
        settings = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Success: {settings.source} is valid")


def cmd_targets(args):
    """Discover databases and print the ones a rotation would change."""
    from credential_rotator.rotation.domains.config_loader import load_config
    from credential_rotator.rotation.workflows.factory import build_password_setter

    settings = load_config(args.config)
    setter = build_password_setter(settings)
    setter.init()
    targets = setter.targets
    for target in targets:
        print(f"{target.name}\t{target.address}" if target.name else target.address)
    print(f"{len(targets)} databases", file=sys.stderr)


def _read_event(args) -> dict:
    if args.event:
        if args.step or args.secret_id or args.token:
            print("Error: --event cannot be combined with --step/--secret-id/--token", file=sys.stderr)
            sys.exit(2)
        event_path = Path(args.event)
        if not event_path.is_file():
            print(f"Error: Event file does not exist: {event_path}", file=sys.stderr)
            sys.exit(2)
        try:
            event = json.loads(event_path.read_text())
        except json.JSONDecodeError as e:
            print(f"Error: Event file is not valid JSON: {e}", file=sys.stderr)
            sys.exit(2)
        if not isinstance(event, dict):
            print("Error: Event file must contain a JSON object", file=sys.stderr)
            sys.exit(2)
        return event

    if not (args.step and args.secret_id and args.token):
        print("Error: provide --event FILE or all of --step, --secret-id and --token", file=sys.stderr)
        sys.exit(2)
    return {"Step": args.step, "SecretId": args.secret_id, "ClientRequestToken": args.token}


def cmd_run(args):
    """Run one rotation step, the same way Secrets Manager invokes the Lambda function."""
    from credential_rotator.rotation.domains.cancel import CancelToken
    from credential_rotator.rotation.domains.config_loader import load_config
    from credential_rotator.rotation.workflows.factory import build_rotator
    from credential_rotator.rotation.workflows.rotator import invoked_by_secrets_manager

    event = _read_event(args)
    if invoked_by_secrets_manager(event):
        validate_step(event["Step"])
        validate_secret_id(event["SecretId"])
        validate_token(event["ClientRequestToken"])

    settings = load_config(args.config)
    if args.skip_database:
        settings = replace(settings, rotation=replace(settings.rotation, skip_database=True))

    rotator = build_rotator(settings)
    cancel = CancelToken.with_timeout(args.timeout) if args.timeout else CancelToken()
    result = rotator.handler(event, cancel)
    if result is not None:
        print(json.dumps(result, indent=2, default=str))
    print(f"Success: {event.get('Step', 'user event')} completed", file=sys.stderr)


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (configuration, AWS, database, rotation failure, etc.)
        2 - Usage errors (invalid arguments, invalid step or secret id, etc.)
    """
    parser = argparse.ArgumentParser(
        prog="credential-rotator",
        description="Rotate database passwords through the AWS Secrets Manager four-step rotation",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (configuration, AWS, database, rotation failure, etc.)
  2 - Usage error (invalid arguments, invalid step or secret id, etc.)

Environment variables:
  CREDENTIAL_ROTATOR_CONFIG - config file path (overridden by --config)
  ROTATOR_SKIP_DATABASE, ROTATOR_PARALLEL, ROTATOR_RETRY, ROTATOR_RETRY_WAIT,
  ROTATOR_REPLICATION_WAIT, AWS_REGION - override config file values

Configuration:
  Default location: ~/.config/credential-rotator/config.yml
  View current: Run 'credential-rotator config show'
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log output (-v info, -vv debug)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of credential-rotator"
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Inspect and validate credential-rotator configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    _config_show_parser = config_subparsers.add_parser(
        "show",
        help="Show config path and effective settings",
        description="""
Display the configuration file path, its source, and the effective settings
after environment overrides.

Sources:
  - argument: Path given with --config
  - environment: CREDENTIAL_ROTATOR_CONFIG
  - default: ~/.config/credential-rotator/config.yml
        """
    )

    _config_validate_parser = config_subparsers.add_parser(
        "validate",
        help="Validate the config file",
        description="Load the config file and report the first validation error, if any"
    )

    # targets command
    _targets_parser = subparsers.add_parser(
        "targets",
        help="List databases a rotation would change",
        description="Run discovery and the configured target filter, then print the included databases"
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run one rotation step",
        description="""
Run one step of the four-step rotation, exactly as the Lambda function would
for a Secrets Manager event.

Steps, in order: createSecret, setSecret, testSecret, finishSecret

Exit codes:
  0 - Step completed
  1 - Step failed (see log output; use -v for details)
  2 - Invalid arguments
        """
    )
    run_parser.add_argument("--event", help="JSON file with the event to handle")
    run_parser.add_argument("--step", help="Rotation step")
    run_parser.add_argument("--secret-id", help="Secret name or ARN")
    run_parser.add_argument("--token", help="Client request token (new secret version id)")
    run_parser.add_argument(
        "--skip-database",
        action="store_true",
        help="Do not set or verify passwords on databases (fix a stuck Secrets Manager rotation)"
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Cancel the step after this many seconds (in-flight database calls finish first)"
    )

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    # If no command provided, show help and exit with usage error code
    if not args.command:
        parser.print_help()
        sys.exit(2)

    # Route to command handlers
    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "config":
            if args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "validate":
                cmd_config_validate(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "targets":
            cmd_targets(args)
        elif args.command == "run":
            cmd_run(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
