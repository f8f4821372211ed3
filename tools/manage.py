#!/usr/bin/env python3
"""
EventGuard Management CLI

Commands:
- generate-resolver-key: Create an Ed25519 keypair for a trusted resolver
- sign-resolution: Produce a signed resolution report (JSON)
- verify-journal: Run the demo lifecycle and verify its journal chain
- health-check: Run health checks against a fresh service

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage generate-resolver-key
    python -m tools.manage sign-resolution --event-id <uuid> --market-id m1 --outcome yes
    python -m tools.manage verify-journal
"""

import argparse
import json
import os
import sys
import time
from pathlib import Path
from uuid import UUID

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def cmd_generate_resolver_key(args):
    """Generate a resolver keypair."""
    from eventguard.core import Signer

    private_key, public_key = Signer.generate_keypair()

    print("\n[OK] Resolver keypair generated")
    print("\n  Public key (add to EVENTGUARD_TRUSTED_RESOLVERS):")
    print(f"  {public_key}")
    print("\n  Private key (KEEP SECRET!):")
    print(f"  {private_key}")
    print("\n  Set this environment variable on the relay:")
    print(f"  EVENTGUARD_RESOLVER_PRIVATE_KEY={private_key}")


def cmd_sign_resolution(args):
    """Sign a resolution report and print it as JSON."""
    from eventguard.core import sign_resolution_report

    private_key = args.private_key or os.environ.get("EVENTGUARD_RESOLVER_PRIVATE_KEY")
    if not private_key:
        print("Error: pass --private-key or set EVENTGUARD_RESOLVER_PRIVATE_KEY")
        return 1

    try:
        event_id = UUID(args.event_id)
    except ValueError:
        print(f"Error: invalid event id {args.event_id}")
        return 1

    report = sign_resolution_report(
        event_id=event_id,
        market_id=args.market_id,
        outcome=args.outcome == "yes",
        private_key_b64=private_key,
        reported_at=args.reported_at or int(time.time()),
    )

    output = json.dumps(report.model_dump(mode="json"), indent=2)
    if args.output:
        Path(args.output).write_text(output)
        print(f"[OK] Report written to {args.output}")
    else:
        print(output)


def cmd_verify_journal(args):
    """Run the demo lifecycle and verify the journal chain."""
    from examples.demo_lifecycle import run_demo

    service = run_demo(verbose=args.verbose)
    head = service.store.get_head()

    print(f"Journal loaded: {head.next_sequence} entries")

    if service.verify_journal_integrity():
        print("[OK] Journal integrity verified OK")
        if head.last_entry_hash:
            print(f"  Chain head: {head.last_entry_hash[:16]}...")
        return 0
    else:
        print("[FAIL] Journal integrity verification FAILED!")
        return 1


def cmd_health_check(args):
    """Run health checks against a freshly configured service."""
    from eventguard.config import ConfigError, Settings
    from eventguard.core import TicketingService
    from eventguard.observability import check_health

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"[FAIL] Configuration: {e}")
        return 1

    service = TicketingService(
        trusted_resolvers=settings.trusted_resolvers,
        require_future_date=settings.require_future_date,
    )
    status = check_health(service=service, store=service.store)

    for name, check in status.checks.items():
        marker = "[OK]" if check.get("status") == "healthy" else "[FAIL]"
        print(f"{marker} {name}: {check}")
    print(f"  Trusted resolvers: {len(settings.trusted_resolvers)}")
    print(f"  Settlement unit: {settings.settlement_unit} ({settings.settlement_decimals} decimals)")

    return 0 if status.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="EventGuard Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # generate-resolver-key
    subparsers.add_parser(
        "generate-resolver-key",
        help="Generate an Ed25519 keypair for a trusted resolver"
    )

    # sign-resolution
    p_sign = subparsers.add_parser(
        "sign-resolution",
        help="Sign a resolution report"
    )
    p_sign.add_argument("--event-id", required=True, help="Event UUID")
    p_sign.add_argument("--market-id", required=True, help="Prediction market id")
    p_sign.add_argument("--outcome", required=True, choices=["yes", "no"])
    p_sign.add_argument("--reported-at", type=int, help="Epoch seconds (default: now)")
    p_sign.add_argument("--private-key", help="Resolver private key (base64)")
    p_sign.add_argument("--output", "-o", help="Write the report to a file")

    # verify-journal
    p_verify = subparsers.add_parser(
        "verify-journal",
        help="Run the demo lifecycle and verify its journal chain"
    )
    p_verify.add_argument("--verbose", "-v", action="store_true", help="Print the demo steps")

    # health-check
    subparsers.add_parser(
        "health-check",
        help="Run health checks"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "generate-resolver-key": cmd_generate_resolver_key,
        "sign-resolution": cmd_sign_resolution,
        "verify-journal": cmd_verify_journal,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
