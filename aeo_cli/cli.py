# aeo_cli/cli.py
"""
CLI registry and dispatcher for lead capture operator commands.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Callable, Dict, Optional

from aeo_api.core.config import settings
from aeo_api.core.logging import configure_structlog
from aeo_cli.verification import (
    check_api_health,
    check_crm,
    get_system_status,
    send_test_otp,
)


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


async def cmd_verify_api_start(args: argparse.Namespace) -> int:
    """Command: Verify API is up."""
    print_info("Checking API health...")
    result = await check_api_health(api_url=args.api_url)

    if result.success:
        print_success(result.message)
        return 0
    print_error(result.message)
    return 1


async def cmd_send_test_otp(args: argparse.Namespace) -> int:
    """Command: Send a test verification email."""
    print_info(f"Sending test code via '{settings.email_provider}'...")
    result = await send_test_otp(settings, args.email)

    if result.success:
        print_success(result.message)
        print_info(f"  Message ID: {result.data['message_id']}")
        return 0
    print_error(result.message)
    return 1


async def cmd_check_crm(args: argparse.Namespace) -> int:
    """Command: Check HubSpot credentials."""
    print_info("Checking HubSpot...")
    result = await check_crm(settings)

    if result.success:
        print_success(result.message)
        if not result.data.get("integration_enabled"):
            print_warning("  ENABLE_HUBSPOT_INTEGRATION is off; leads will not be synced")
        return 0
    print_error(result.message)
    return 1


async def cmd_system_status(args: argparse.Namespace) -> int:
    """Command: Quick configuration and connectivity summary."""
    print_info("Checking system status...")
    result = await get_system_status(settings)

    for service_name, service_status in result.data["services"].items():
        state = service_status.get("status", "unknown")
        if state == "unreachable":
            print_error(f"{service_name.capitalize()}: {state}")
            if service_status.get("error"):
                print_error(f"  Error: {service_status['error']}")
        else:
            print_success(f"{service_name.capitalize()}: {state}")

    if not result.data["all_connected"]:
        print_warning(result.message)
    return 0  # information only


COMMANDS: Dict[str, Callable] = {
    'verify-api-start': cmd_verify_api_start,
    'send-test-otp': cmd_send_test_otp,
    'check-crm': cmd_check_crm,
    'system-status': cmd_system_status,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        description='AEO Audit Suite lead capture CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    api_parser = subparsers.add_parser('verify-api-start', help='Verify API is up')
    api_parser.add_argument('--api-url', default='http://localhost:8000', help='API URL')

    otp_parser = subparsers.add_parser('send-test-otp', help='Send a test verification email')
    otp_parser.add_argument('--email', required=True, help='Recipient address')

    subparsers.add_parser('check-crm', help='Check HubSpot credentials')

    subparsers.add_parser('system-status', help='Quick system status')

    return parser


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS.get(parsed_args.command)
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command}")
        parser.print_help()
        return 1

    configure_structlog()

    try:
        return asyncio.run(command_func(parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {e}")
        if os.getenv('DEBUG'):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
