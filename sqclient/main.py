"""
Main entry point for the SideQuest session client.

This module provides the command-line interface for logging in with a short
code, inspecting and refreshing the stored session, and listing or granting
achievements.
"""

import sys
import asyncio
import argparse
import logging
import json
from typing import Any, Dict

from sqclient.config import ClientConfiguration
from sqclient.session import SideQuestSession
from sqshared.exceptions import (
    AchievementSyncError, AuthError, ConfigurationError, LoginCodeExpiredError,
    SideQuestError, TransportError
)
from sqshared.logging_config import LogFormat, LogLevel, log_structured_error, setup_logging
from sqshared.models import format_timestamp

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_AUTH_FAILED = 2
EXIT_CONFIG_ERROR = 3
EXIT_LOGIN_EXPIRED = 4
EXIT_NETWORK_ERROR = 5
EXIT_CANCELLED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="sq-session",
        description="SideQuest app session client",
        epilog="""
Examples:
  %(prog)s --login                 # Log in with a short code and wait for approval
  %(prog)s --status --json         # Show the stored session as JSON
  %(prog)s --refresh               # Refresh the profile and achievements
  %(prog)s --grant first_win       # Grant an achievement to the user
  %(prog)s --logout                # Forget the stored session
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--login", action="store_true",
                                 help="Log in with a short code and wait until it is approved")
    operation_group.add_argument("--cancel-login", action="store_true",
                                 help="Discard a pending short code login")
    operation_group.add_argument("--status", action="store_true",
                                 help="Show the stored session and exit")
    operation_group.add_argument("--refresh", action="store_true",
                                 help="Refresh the user profile and achievements")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Log out and forget the stored session")
    operation_group.add_argument("--achievements", action="store_true",
                                 help="List the achievements unlocked by the user")
    operation_group.add_argument("--app-achievements", action="store_true",
                                 help="List every achievement defined for the app")
    operation_group.add_argument("--grant", type=str, metavar="IDENTIFIER",
                                 help="Grant an achievement to the user")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--client-id", type=str, metavar="ID",
                              help="Override the app client id")
    config_group.add_argument("--data-dir", type=str, metavar="DIR",
                              help="Override the session data directory")
    config_group.add_argument("--data-file", type=str, metavar="NAME",
                              help="Override the session data file name")
    config_group.add_argument("--production", action="store_true",
                              help="Use the production API instead of the test API")
    config_group.add_argument("--encrypt", action="store_true",
                              help="Encrypt the session data file")
    config_group.add_argument("--timeout", type=float, metavar="SECONDS",
                              help="Request timeout in seconds")

    login_group = parser.add_argument_group('Login')
    login_group.add_argument("--scope", action="append", dest="scopes", metavar="SCOPE",
                             help="Scope to request, may be repeated (default: profile and achievements)")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-error output")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to file")
    debug_group.add_argument("--audit-file", type=str, metavar="FILE",
                             help="Write session audit events as JSON to file")
    debug_group.add_argument("--log-format", type=str, choices=[f.value for f in LogFormat],
                             help="Log output format")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    if args.scopes and not args.login:
        parser.error("--scope can only be used with --login")

    return args


def build_configuration(args) -> ClientConfiguration:
    """Create the client configuration with command line overrides applied."""
    overrides = {
        'client_id': args.client_id,
        'data_dir': args.data_dir,
        'data_file': args.data_file,
        'timeout': args.timeout,
        'log_file': args.log_file,
        'audit_file': args.audit_file,
    }
    if args.production:
        overrides['test_mode'] = False
    if args.encrypt:
        overrides['encrypt'] = True

    return ClientConfiguration(args.config, overrides=overrides)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging based on command line arguments and configuration."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    elif args.quiet or args.json:
        log_level = LogLevel.ERROR
    else:
        try:
            log_level = LogLevel(config.get_log_level())
        except ValueError:
            log_level = LogLevel.WARNING

    if args.log_format:
        log_format = LogFormat(args.log_format)
    else:
        log_format = LogFormat.DETAILED if args.debug else LogFormat.STANDARD

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=config.get_log_file(),
        audit_file=config.get_audit_file()
    )


def session_summary(session: SideQuestSession) -> Dict[str, Any]:
    """Describe the stored session for status output."""
    user = session.user
    login_code = session.login_code

    return {
        'logged_in': session.is_logged_in,
        'login_state': session.login_state.value,
        'user': user.to_dict() if user else None,
        'scopes': session.granted_scopes,
        'login_code': {
            'code': login_code.code,
            'verification_url': login_code.verification_url,
            'expires_at': format_timestamp(login_code.expires_at),
        } if login_code else None,
        'achievements': len(session.user_achievements),
    }


def output(args, data: Any, text: str) -> None:
    if args.json:
        print(json.dumps(data, default=str))
    elif not args.quiet:
        print(text)


async def run_login(args, session: SideQuestSession) -> int:
    """Request a short code and poll until the login completes or expires."""
    login_code = await session.request_login_code(args.scopes)

    if not args.json:
        print(f"Go to {login_code.verification_url or 'the SideQuest website'} and enter the code: {login_code.code}")
        print(f"The code expires at {login_code.expires_at.isoformat()}")

    try:
        while True:
            await asyncio.sleep(login_code.interval)
            try:
                completed, user = await session.check_login_code_complete()
            except AchievementSyncError as e:
                logger.warning(f"Logged in but achievements were not refreshed: {e}")
                completed, user = True, e.user

            if completed:
                output(args, session_summary(session), f"Logged in as {user.name} ({user.user_id})")
                return EXIT_SUCCESS

    except LoginCodeExpiredError:
        if not args.quiet:
            print("The login code expired before it was approved", file=sys.stderr)
        return EXIT_LOGIN_EXPIRED
    except asyncio.CancelledError:
        session.clear_login_code()
        raise


async def run_operation(args, session: SideQuestSession) -> int:
    if args.login:
        return await run_login(args, session)

    if args.cancel_login:
        session.clear_login_code()
        output(args, {'cancelled': True}, "Pending login cancelled")
        return EXIT_SUCCESS

    if args.status:
        summary = session_summary(session)
        if args.json:
            print(json.dumps(summary, default=str))
        elif not args.quiet:
            user = session.user
            print(f"Logged in: {'Yes' if summary['logged_in'] else 'No'}")
            if user:
                print(f"User: {user.name} ({user.user_id})")
            if args.verbose:
                print(f"Login state: {summary['login_state']}")
                print(f"Scopes: {', '.join(summary['scopes']) or '-'}")
                print(f"Cached achievements: {summary['achievements']}")
        return EXIT_SUCCESS

    if args.logout:
        was_logged_in = session.logout()
        output(args, {'logged_out': was_logged_in},
               "Logged out" if was_logged_in else "No user was logged in")
        return EXIT_SUCCESS

    if args.refresh:
        user = await session.refresh_user_profile()
        output(args, session_summary(session), f"Refreshed profile of {user.name} ({user.user_id})")
        return EXIT_SUCCESS

    if args.achievements:
        achievements = await session.refresh_user_achievements()
        output(args, [a.to_dict() for a in achievements],
               "\n".join(f"{a.achievement_identifier}\t{a.name or ''}" for a in achievements) or "No achievements")
        return EXIT_SUCCESS

    if args.app_achievements:
        achievements = await session.get_app_achievements()
        output(args, [a.to_dict() for a in achievements],
               "\n".join(f"{a.achievement_identifier}\t{a.name or ''}" for a in achievements) or "No achievements")
        return EXIT_SUCCESS

    if args.grant:
        achievement = await session.add_user_achievement(args.grant)
        output(args, achievement.to_dict() if achievement else None, f"Granted achievement {args.grant}")
        return EXIT_SUCCESS

    return EXIT_FAILED


async def run_cli(args, config: ClientConfiguration) -> int:
    """Run a single operation against the stored session."""
    try:
        async with SideQuestSession.from_config(config) as session:
            return await run_operation(args, session)

    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except AuthError as e:
        log_structured_error(logger, e)
        if not args.quiet:
            print(f"Authentication failed: {e.user_message}", file=sys.stderr)
        return EXIT_AUTH_FAILED
    except TransportError as e:
        log_structured_error(logger, e)
        if not args.quiet:
            print(f"Network error: {e.user_message}", file=sys.stderr)
        return EXIT_NETWORK_ERROR
    except SideQuestError as e:
        log_structured_error(logger, e)
        if not args.quiet:
            print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_FAILED


def main(argv=None):
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)
        config = build_configuration(args)
        configure_logging(args, config)

        return asyncio.run(run_cli(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_CANCELLED
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if not getattr(args, 'json', False):
            logger.exception("Fatal error in main")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
