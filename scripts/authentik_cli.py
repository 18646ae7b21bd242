"""Operator CLI for the Authentik provisioning module.

Wraps whmcs_authentik services for manual checks (username generation and
collision lookups) and for running lifecycle actions outside the host.
"""
from __future__ import annotations
import argparse
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from whmcs_authentik.config import load_settings
from whmcs_authentik.core.authentik import AuthentikClient, AuthentikError, UserService
from whmcs_authentik.core.provisioning_service import (
    AccountSynchronizer,
    JsonFileAccountStore,
    ProvisioningRequest,
    QueuedNotifier,
)
from whmcs_authentik.core.usernames import (
    AllocationExhaustedError,
    allocate_unique_username,
    generate_username,
    username_exists,
)

LIFECYCLE_COMMANDS = ("activate", "suspend", "unsuspend", "terminate")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Authentik provisioning helper")
    parser.add_argument("--url", default=os.environ.get("AUTHENTIK_URL"))
    parser.add_argument("--token", default=os.environ.get("AUTHENTIK_API_TOKEN"))
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed progress on stderr")

    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("generate", help="Generate a single random username")

    sc = sub.add_parser("check", help="Check if a username exists")
    sc.add_argument("username")

    sub.add_parser("unique", help="Generate a username that is free in Authentik")

    st = sub.add_parser("test", help="Run generate/check/unique in a loop")
    st.add_argument("--count", type=int, default=1)

    for name in LIFECYCLE_COMMANDS:
        sp = sub.add_parser(name, help=f"{name.capitalize()} the account of a service")
        sp.add_argument("--service-id", required=True)
        sp.add_argument("--group", default=None)
        sp.add_argument("--store", default=None, help="JSON account store path")
        if name == "activate":
            sp.add_argument("--email", required=True)
            sp.add_argument("--first", default="")
            sp.add_argument("--last", default="")
            sp.add_argument("--client-id", default=None)

    return parser


def _log(args, message: str) -> None:
    if args.verbose:
        print(f"[authentik] {message}", file=sys.stderr)


def _run_lifecycle(args, settings) -> int:
    store = JsonFileAccountStore(args.store or settings.account_store_path)
    notifier = QueuedNotifier()
    synchronizer = AccountSynchronizer(
        store,
        notifier,
        max_username_attempts=settings.max_username_attempts,
        idempotent_activate=settings.idempotent_activate,
    )
    request = ProvisioningRequest(
        base_url=args.url,
        api_token=args.token,
        service_id=args.service_id,
        group_name=args.group or settings.default_group_name,
        email=getattr(args, "email", ""),
        first_name=getattr(args, "first", ""),
        last_name=getattr(args, "last", ""),
        client_id=getattr(args, "client_id", None),
        timeout=args.timeout or settings.request_timeout,
    )
    result = getattr(synchronizer, args.cmd)(request)
    if not result.success:
        print(f"[{args.cmd}] Error: {result.to_host_string()}", file=sys.stderr)
        return 1

    print(f"[{args.cmd}] success: {result.username}")
    for notice in notifier.sent:
        # Stands in for the host's mailer when run by hand
        print(f"[{args.cmd}] Username: {notice.username}")
        print(f"[{args.cmd}] Password: {notice.password}")
        print(f"[{args.cmd}] Login at: {notice.authentik_url}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    if args.cmd == "generate":
        print(generate_username())
        return

    if not args.url:
        parser.error("Missing Authentik URL (--url or AUTHENTIK_URL)")
    if not args.token:
        parser.error("Missing Authentik API token (--token or AUTHENTIK_API_TOKEN)")

    settings = load_settings()

    if args.cmd in LIFECYCLE_COMMANDS:
        sys.exit(_run_lifecycle(args, settings))

    users = UserService(AuthentikClient(args.url, args.token, timeout=args.timeout or settings.request_timeout))

    try:
        if args.cmd == "check":
            exists = username_exists(users, args.username)
            print(f"Username exists: {'Yes' if exists else 'No'}")
        elif args.cmd == "unique":
            print(allocate_unique_username(users, max_attempts=settings.max_username_attempts))
        elif args.cmd == "test":
            failures = 0
            for i in range(args.count):
                print(f"Test iteration {i + 1}:")
                try:
                    candidate = generate_username()
                    print(f"  Random Username: {candidate}")
                    _log(args, f"checking '{candidate}'")
                    print(f"  Username Exists: {'Yes' if username_exists(users, candidate) else 'No'}")
                    print(f"  Unique Username: {allocate_unique_username(users, max_attempts=settings.max_username_attempts)}")
                except (AuthentikError, AllocationExhaustedError) as e:
                    failures += 1
                    print(f"  Error: {e}")
            if failures:
                sys.exit(1)
        else:
            parser.print_help()
    except (AuthentikError, AllocationExhaustedError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
