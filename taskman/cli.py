"""Command-line interface for taskman authentication."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from typing import TYPE_CHECKING

from . import log
from .auth.factory import SUPPORTED_PROVIDERS, AuthServiceFactory
from .auth.types import AuthFlowState, AuthFlowStatus
from .config import _find_config_files, get_settings
from .exceptions import TaskmanException


if TYPE_CHECKING:
    from .config import TaskmanSettings


_STATE_MARKERS = {
    AuthFlowState.INITIALIZING: "[ ]",
    AuthFlowState.BROWSER_OPENING: "[>]",
    AuthFlowState.WAITING_FOR_USER: "[.]",
    AuthFlowState.PROCESSING_TOKEN: "[*]",
    AuthFlowState.SUCCESS: "[✓]",
    AuthFlowState.ERROR: "[✗]",
}


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list of str, optional
        Arguments (defaults to ``sys.argv[1:]``).

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="taskman",
        description="taskman account sign-in and configuration",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through the browser",
    )
    login_parser.add_argument(
        "--provider",
        "-p",
        type=str,
        choices=[provider.value for provider in SUPPORTED_PROVIDERS],
        default="google",
        help="Identity provider (default: google)",
    )
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the sign-in URL instead of opening a browser",
    )

    subparsers.add_parser("logout", help="Sign out and remove the local session")
    subparsers.add_parser("status", help="Show the signed-in account")
    subparsers.add_parser("token", help="Print the API bearer token")

    config_parser = subparsers.add_parser(
        "config",
        help="Show the effective configuration",
    )
    config_parser.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )

    args = parser.parse_args(argv)

    settings = get_settings()
    log.set_level("DEBUG" if args.debug else settings.log.level)

    if args.command == "login":
        return handle_login(args, settings)
    if args.command == "logout":
        return handle_logout(args, settings)
    if args.command == "status":
        return handle_status(args, settings)
    if args.command == "token":
        return handle_token(args, settings)
    if args.command == "config":
        return handle_config(args, settings)
    parser.print_help()
    return 0


def format_status(status: AuthFlowStatus) -> str:
    """Render one login status event as a terminal line.

    Parameters
    ----------
    status : AuthFlowStatus
        The event.

    Returns
    -------
    str
    """
    line = f"{_STATE_MARKERS[status.state]} {status.message or status.state.value}"
    if status.auth_url:
        line += f"\n    If the browser did not open, visit:\n    {status.auth_url}"
    if status.error is not None:
        line += f"\n    {status.error.code}: {status.error.description}"
    return line


def _print_status(status: AuthFlowStatus) -> None:
    stream = sys.stderr if status.state is AuthFlowState.ERROR else sys.stdout
    print(format_status(status), file=stream, flush=True)


def handle_login(args: argparse.Namespace, settings: TaskmanSettings) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : TaskmanSettings
        Effective configuration.

    Returns
    -------
    int
        Exit code.
    """
    if args.no_browser:
        settings = settings.model_copy(
            update={"auth": settings.auth.model_copy(update={"open_browser": False})}
        )

    async def _login() -> int:
        factory = AuthServiceFactory(settings)
        try:
            await factory.login(args.provider, _print_status)
        except TaskmanException:
            # Already reported through the ERROR status line.
            return 1
        finally:
            await factory.close()
        return 0

    try:
        return asyncio.run(_login())
    except KeyboardInterrupt:
        print("\nLogin cancelled.", file=sys.stderr)
        return 130


def handle_logout(args: argparse.Namespace, settings: TaskmanSettings) -> int:
    """Handle the logout command.

    Returns
    -------
    int
        Exit code.
    """

    async def _logout() -> None:
        factory = AuthServiceFactory(settings)
        try:
            await factory.logout()
        finally:
            await factory.close()

    try:
        asyncio.run(_logout())
    except TaskmanException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print("Signed out.")
    return 0


def handle_status(args: argparse.Namespace, settings: TaskmanSettings) -> int:
    """Handle the status command.

    Returns
    -------
    int
        Exit code (1 when signed out).
    """

    async def _status() -> int:
        factory = AuthServiceFactory(settings)
        try:
            session = await factory.get_current_session()
        finally:
            await factory.close()
        if session is None or session.is_expired():
            print("Not signed in.")
            return 1
        print(f"Signed in as {session.name or session.email} <{session.email}>")
        print(f"Provider: {session.provider.value}")
        if session.internal_expires_at is not None:
            print(f"API token valid until: {session.internal_expires_at} (unix)")
        return 0

    try:
        return asyncio.run(_status())
    except TaskmanException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def handle_token(args: argparse.Namespace, settings: TaskmanSettings) -> int:
    """Handle the token command.

    Returns
    -------
    int
        Exit code (1 when signed out).
    """

    async def _token() -> str | None:
        factory = AuthServiceFactory(settings)
        try:
            return await factory.get_backend_token()
        finally:
            await factory.close()

    try:
        token = asyncio.run(_token())
    except TaskmanException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    if not token:
        print("Not signed in.", file=sys.stderr)
        return 1
    print(token)
    return 0


def handle_config(args: argparse.Namespace, settings: TaskmanSettings) -> int:
    """Handle the config command.

    Returns
    -------
    int
        Exit code.
    """
    if args.sources:
        return show_config_sources()
    print(settings.to_display())
    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    print("Configuration files (in order of precedence, lowest first):\n")
    files = _find_config_files()
    if not files:
        print("  (none found, using built-in defaults)")
    for path in files:
        print(f"  ✓ {path}")

    taskman_vars = sorted(k for k in os.environ if k.startswith("TASKMAN_"))
    print(f"\nEnvironment variables: {len(taskman_vars)}")
    for name in taskman_vars:
        print(f"  {name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
