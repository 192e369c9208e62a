#!/usr/bin/env python3
"""Command-line interface for receipt tools.

Validates receipts with the App Store and checks purchases and
subscriptions in validated receipt JSON.

Usage:
    python -m purchases_sdk.cli validate --receipt-file receipt.bin --bundle-id com.example.app
    python -m purchases_sdk.cli verify-purchase --receipt receipt.json --product-id com.example.pro
    python -m purchases_sdk.cli verify-subscription --receipt receipt.json --product-id com.example.monthly --at 2024-01-31
    python -m purchases_sdk.cli verify-subscription --receipt receipt.json --product-id com.example.season --type non-renewing --duration-days 90
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from .connectors.appstore_validator import AppStoreReceiptValidator
from .receipt import (
    AutoRenewable,
    NonRenewing,
    NotPurchased,
    PurchaseVerifier,
    ReceiptInfo,
    SubscriptionPurchased,
)
from .receipt.models import ensure_utc

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats, returning UTC.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed timezone-aware datetime.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return ensure_utc(datetime.strptime(dt_string, fmt))
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def load_receipt(path: str) -> ReceiptInfo:
    """Load validated receipt JSON from ``path``.

    Raises:
        ValueError: If the file is not valid receipt JSON.
    """
    try:
        with open(path) as f:
            raw = json.load(f)
    except OSError as e:
        raise ValueError(f"Cannot read receipt file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Receipt file {path} is not valid JSON: {e}") from e
    return ReceiptInfo.from_raw(raw)


def _print(result) -> None:
    print(json.dumps(result.model_dump(mode="json"), indent=2))


def cmd_validate(args: argparse.Namespace) -> int:
    with open(args.receipt_file, "rb") as f:
        receipt_data = f.read()
    validator = AppStoreReceiptValidator(
        bundle_id=args.bundle_id,
        sandbox=args.sandbox,
        shared_secret=args.shared_secret,
    )
    result = validator.validate(receipt_data)
    if not result.ok:
        logger.error(f"Validation failed: {result.error}")
        return 1

    output = json.dumps(result.receipt.raw, indent=2)
    if args.output:
        with open(args.output, "w") as f:
            f.write(output)
        logger.info(f"Validated receipt written to {args.output}")
    else:
        print(output)
    return 0


def cmd_verify_purchase(args: argparse.Namespace) -> int:
    receipt = load_receipt(args.receipt)
    result = PurchaseVerifier().verify_purchase(args.product_id, receipt)
    _print(result)
    return 1 if isinstance(result, NotPurchased) else 0


def cmd_verify_subscription(args: argparse.Namespace) -> int:
    if args.type == "non-renewing":
        if not args.duration_days:
            raise ValueError("--duration-days is required for non-renewing subscriptions")
        subscription_type = NonRenewing(valid_duration=timedelta(days=args.duration_days))
    else:
        subscription_type = AutoRenewable()

    reference_date = parse_datetime(args.at) if args.at else None
    receipt = load_receipt(args.receipt)
    result = PurchaseVerifier().verify_subscription(
        subscription_type, args.product_id, receipt, reference_date=reference_date
    )
    _print(result)
    return 0 if isinstance(result, SubscriptionPurchased) else 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="purchases",
        description="Receipt validation and verification tools.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate a receipt file with the App Store",
    )
    validate_parser.add_argument("--receipt-file", required=True, help="Raw receipt file")
    validate_parser.add_argument("--bundle-id", help="App bundle ID (default: $APPSTORE_BUNDLE_ID)")
    validate_parser.add_argument("--shared-secret", help="Shared secret (default: $APPSTORE_SHARED_SECRET)")
    validate_parser.add_argument("--sandbox", action="store_true", default=None, help="Use the sandbox environment")
    validate_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    validate_parser.set_defaults(handler=cmd_validate)

    purchase_parser = subparsers.add_parser(
        "verify-purchase",
        help="Check whether a validated receipt contains a product",
    )
    purchase_parser.add_argument("--receipt", "-r", required=True, help="Validated receipt JSON")
    purchase_parser.add_argument("--product-id", "-p", required=True, help="Product identifier")
    purchase_parser.set_defaults(handler=cmd_verify_purchase)

    subscription_parser = subparsers.add_parser(
        "verify-subscription",
        help="Check whether a subscription is active",
    )
    subscription_parser.add_argument("--receipt", "-r", required=True, help="Validated receipt JSON")
    subscription_parser.add_argument("--product-id", "-p", required=True, help="Product identifier")
    subscription_parser.add_argument(
        "--type", "-t",
        choices=["auto-renewable", "non-renewing"],
        default="auto-renewable",
        help="Subscription type (default: auto-renewable)",
    )
    subscription_parser.add_argument(
        "--duration-days",
        type=int,
        help="Validity of a non-renewing subscription, in days",
    )
    subscription_parser.add_argument(
        "--at",
        help="Reference date/time (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS, default: now)",
    )
    subscription_parser.set_defaults(handler=cmd_verify_subscription)

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        0 when the product is owned or the subscription active, 1 otherwise,
        2 on invalid input.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 2

    try:
        return parsed_args.handler(parsed_args)
    except (ValueError, OSError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
