#!/usr/bin/env python3
"""
MotorLog Notifier Management CLI

Utility script for managing:
- VAPID key pairs (VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY)
- Secret keys (SECRET_KEY, CRON_SECRET)
- User bearer tokens for the subscription routes
- One-off reminder checks outside the scheduler

Usage:
    python scripts/manage_push.py generate-vapid-keys
    python scripts/manage_push.py generate-secret-key
    python scripts/manage_push.py issue-token <user_id>
    python scripts/manage_push.py run-check
    python scripts/manage_push.py list-config
"""

import argparse
import os
import sys
from pathlib import Path

# Add notifier directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "notifier"))

from database import SessionLocal, init_db  # noqa: E402
from exceptions import ConfigurationError  # noqa: E402
from services.reminder_run import run_reminder_check  # noqa: E402
from utils.auth_utils import generate_secret_key, generate_vapid_keys, issue_user_token  # noqa: E402


def generate_vapid_keys_command(args):
    """Generate a new VAPID key pair."""
    public_key, private_key = generate_vapid_keys()
    print("Generated VAPID key pair:")
    print(f"  public:  {public_key}")
    print(f"  private: {private_key}")
    print("\nAdd to your .env file:")
    print(f"  VAPID_PUBLIC_KEY={public_key}")
    print(f"  VAPID_PRIVATE_KEY={private_key}")
    print("\nThe browser needs the public key as applicationServerKey when subscribing.")
    print("Changing the key pair invalidates every existing subscription!")


def generate_secret_key_command(args):
    """Generate a new secret key."""
    key = generate_secret_key(length=32)
    print(f"Generated {args.name}:")
    print(f"  {key}")
    print("\nAdd to your .env file:")
    print(f"  {args.name}={key}")


def issue_token_command(args):
    """Issue a bearer token for a user."""
    try:
        token = issue_user_token(args.user_id)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Token for user {args.user_id}:")
    print(f"  {token}")
    print("\nSend it as:")
    print(f"  Authorization: Bearer {token}")


def run_check_command(args):
    """Run one reminder check now."""
    init_db()
    db = SessionLocal()
    try:
        summary = run_reminder_check(db, trigger="cli")
    except ConfigurationError as e:
        print(f"Error: {e}")
        print("Run 'generate-vapid-keys' and set VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY.")
        sys.exit(1)
    finally:
        SessionLocal.remove()

    print(summary.message())
    if args.verbose:
        for result in summary.results:
            print(f"  {result.vehicle_id}: {result.message()}")


def list_config_command(args):
    """Show current push configuration from environment."""
    print("Current Push Configuration")
    print("=" * 60)

    vars_to_check = {
        "VAPID_PUBLIC_KEY": "Push public key",
        "VAPID_PRIVATE_KEY": "Push private key",
        "VAPID_SUBJECT": "VAPID contact (mailto: or https:)",
        "SECRET_KEY": "Signs user tokens",
        "CRON_SECRET": "Shared secret for the cron route",
        "SCHEDULER_ENABLED": "In-process scheduler enabled",
        "DATABASE_URL": "Database",
    }
    sensitive = {"VAPID_PRIVATE_KEY", "SECRET_KEY", "CRON_SECRET"}

    for var, description in vars_to_check.items():
        value = os.environ.get(var)
        if value:
            if var in sensitive:
                display_value = f"{value[:6]}..." if len(value) > 6 else "***"
            else:
                display_value = value if len(value) <= 20 else f"{value[:17]}..."
            print(f"✓ {var:20s} = {display_value:20s} # {description}")
        else:
            print(f"✗ {var:20s} = NOT SET              # {description}")


def build_parser():
    parser = argparse.ArgumentParser(
        description="MotorLog Notifier Management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate the VAPID key pair used to sign pushes
  python scripts/manage_push.py generate-vapid-keys

  # Generate a shared secret for the cron route
  python scripts/manage_push.py generate-secret-key --name CRON_SECRET

  # Issue a bearer token for user "abc123"
  python scripts/manage_push.py issue-token abc123

  # Check every vehicle now and print per-vehicle results
  python scripts/manage_push.py run-check --verbose
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    vapid_parser = subparsers.add_parser("generate-vapid-keys", help="Generate a VAPID key pair")
    vapid_parser.set_defaults(func=generate_vapid_keys_command)

    secret_parser = subparsers.add_parser("generate-secret-key", help="Generate a random secret")
    secret_parser.add_argument(
        "--name",
        default="SECRET_KEY",
        choices=["SECRET_KEY", "CRON_SECRET"],
        help="Variable the secret is for"
    )
    secret_parser.set_defaults(func=generate_secret_key_command)

    token_parser = subparsers.add_parser("issue-token", help="Issue a user bearer token")
    token_parser.add_argument("user_id", help="User the token identifies")
    token_parser.set_defaults(func=issue_token_command)

    check_parser = subparsers.add_parser("run-check", help="Run the reminder check once")
    check_parser.add_argument("--verbose", "-v", action="store_true", help="Print per-vehicle results")
    check_parser.set_defaults(func=run_check_command)

    list_parser = subparsers.add_parser("list-config", help="Show current push configuration")
    list_parser.set_defaults(func=list_config_command)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
