"""CLI entrypoint for gsm-toolkit."""
import sys
import argparse
import logging
from pathlib import Path

from .validators import validate_project_id, validate_secret_name, validate_secret_value

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s" if verbose else "%(message)s",
        stream=sys.stderr
    )


def _make_context(args):
    from gsm_toolkit.secrets.domains.context import CallContext

    timeout = getattr(args, "timeout", None)
    if timeout is None:
        return CallContext.background()
    return CallContext.with_timeout(timeout)


def _make_operations(args):
    from gsm_toolkit.secrets.domains.config_loader import load_config
    from gsm_toolkit.secrets.workflows.secret_operations import SecretOperations

    return SecretOperations(load_config(getattr(args, "config", None)))


def cmd_version(args):
    """Show version information."""
    print(f"gsm-toolkit {VERSION}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from gsm_toolkit.secrets.domains.preferences import set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show the config file in use and the effective settings."""
    from gsm_toolkit.secrets.domains import config_loader
    from gsm_toolkit.secrets.domains.preferences import get_preference

    explicit_path = getattr(args, "config", None)
    config_path_pref = get_preference("config_path")
    if explicit_path:
        print(f"Config path: {explicit_path}")
        print("Source: --config")
    elif config_path_pref and Path(config_path_pref).exists():
        print(f"Config path: {config_path_pref}")
        print("Source: preference")
    elif config_path_pref:
        print(f"Config path (from preference, but file not found): {config_path_pref}")
        print("Source: preference")
    elif config_loader.DEFAULT_CONFIG_PATH.exists():
        print(f"Config path: {config_loader.DEFAULT_CONFIG_PATH}")
        print("Source: default")
    else:
        print(f"Config path: {config_loader.DEFAULT_CONFIG_PATH}")
        print("Source: default (file not found, using built-in settings)")

    config = config_loader.load_config(explicit_path)
    print(f"\nMetadata URL: {config.metadata_url}")
    print(f"API URL: {config.api_url}")
    print(f"Retry: {config.max_attempts} attempts, {config.retry_delay}s delay")
    print(f"Request timeout: {config.request_timeout}s")


def cmd_config_clear(args):
    """Clear config path preference."""
    from gsm_toolkit.secrets.domains import config_loader
    from gsm_toolkit.secrets.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {config_loader.DEFAULT_CONFIG_PATH}")


def cmd_secrets_get(args):
    """Get a secret from Secret Manager."""
    validate_secret_name(args.secret_name)
    validate_project_id(args.project_id)

    operations = _make_operations(args)
    ctx = _make_context(args)
    try:
        if args.project_id:
            secret_value = operations.fetch_from_project(args.project_id, args.secret_name, ctx)
        else:
            secret_value = operations.fetch(args.secret_name, ctx)
    finally:
        operations.close()

    if args.quiet:
        print(secret_value)
    else:
        print(f"Secret '{args.secret_name}': {secret_value}")


def cmd_secrets_set(args):
    """Store a new version of a secret in Secret Manager."""
    validate_secret_name(args.secret_name)
    validate_project_id(args.project_id)

    if args.stdin:
        value = sys.stdin.read()
        if value.endswith("\n"):
            value = value[:-1]
    else:
        value = args.value
    validate_secret_value(value)

    operations = _make_operations(args)
    ctx = _make_context(args)
    try:
        if args.project_id:
            operations.store_in_project(args.project_id, args.secret_name, value, ctx)
        else:
            operations.store(args.secret_name, value, ctx)
    finally:
        operations.close()

    print(f"Secret '{args.secret_name}' stored")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="gsmtool",
        description="gsm-toolkit CLI - Secret Manager access through the GCE metadata server",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (authentication, network, secret not found, etc.)
  2 - Usage error (invalid arguments, invalid secret name format, etc.)

Environment variables:
  GSM_METADATA_URL - Metadata server base URL (overrides config file)
  GSM_API_URL      - Secret Manager API base URL (overrides config file)

Configuration:
  Default location: ~/.config/gsm-toolkit/config.yml (optional)
  Custom path: Set with 'gsmtool config set-path <path>'
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log retries and requests to stderr"
    )
    parser.add_argument(
        "--config",
        help="Path to config file (overrides preference and default location)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of gsm-toolkit"
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage gsm-toolkit configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="Store the absolute path of a config file in ~/.config/gsm-toolkit/preferences.json"
    )
    config_set_path_parser.add_argument("path", help="Path to config file")

    config_subparsers.add_parser(
        "show",
        help="Show current config path and settings",
        description="Display the config file in use, where it came from, and the effective settings"
    )
    config_subparsers.add_parser(
        "clear",
        help="Clear config path preference",
        description="Remove the config path preference; the default location is used afterwards"
    )

    # secrets command
    secrets_parser = subparsers.add_parser(
        "secrets",
        help="Secret management operations",
        description="Read and write secrets in Secret Manager"
    )
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command")

    get_parser = secrets_subparsers.add_parser(
        "get",
        help="Get a secret value",
        description="""
Fetch the latest version of a secret.

The project ID is resolved from the metadata server unless --project-id is
given. The access token always comes from the metadata server.

Exit codes:
  0 - Secret found and printed
  1 - Secret not found, access denied, or the service was unreachable
  2 - Invalid secret name or project ID format
        """
    )
    get_parser.add_argument(
        "secret_name",
        help="Name of the secret (format: [a-zA-Z0-9_-]{1,255})"
    )
    get_parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Output only the secret value (useful for scripts)"
    )

    set_parser = secrets_subparsers.add_parser(
        "set",
        help="Store a secret value",
        description="""
Create the secret if needed, then add a new version holding the value.

Each call adds one version; the newest version becomes 'latest'.
        """
    )
    set_parser.add_argument(
        "secret_name",
        help="Name of the secret (format: [a-zA-Z0-9_-]{1,255})"
    )
    set_parser.add_argument("value", nargs="?", help="Secret value")
    set_parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read the value from stdin (one trailing newline is stripped)"
    )

    for sub in (get_parser, set_parser):
        sub.add_argument(
            "--project-id",
            help="GCP project ID (auto-detected from the metadata server if not provided)"
        )
        sub.add_argument(
            "--timeout",
            type=float,
            help="Give up after this many seconds, including retries"
        )

    return parser, config_parser, secrets_parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (authentication, network, secret not found, etc.)
        2 - Usage errors (invalid arguments, invalid secret name format, etc.)
    """
    from gsm_toolkit.secrets.domains.config_loader import ConfigError
    from gsm_toolkit.secrets.domains.errors import InvalidArgument, SecretManagerError

    parser, config_parser, secrets_parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    if args.command == "secrets" and args.secrets_command == "set":
        if args.stdin == (args.value is not None):
            print("Error: Provide either VALUE or --stdin", file=sys.stderr)
            sys.exit(2)

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "config":
            if args.config_command == "set-path":
                cmd_config_set_path(args)
            elif args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "clear":
                cmd_config_clear(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "secrets":
            if args.secrets_command == "get":
                cmd_secrets_get(args)
            elif args.secrets_command == "set":
                cmd_secrets_set(args)
            else:
                secrets_parser.print_help()
                sys.exit(2)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except InvalidArgument as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (SecretManagerError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.debug("unexpected error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
