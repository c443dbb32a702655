"""
Command-line interface for PhonePe Payments.

Gateway credentials come from PHONEPE_* environment variables (see
``GatewayConfig.from_env``); the audit log is a SQLite file chosen with --db.
"""

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from phonepe_payments import PhonePeClient
from phonepe_payments.config import GatewayConfig
from phonepe_payments.exceptions import PhonePePaymentsError
from phonepe_payments.storage import SQLiteAuditLog
from phonepe_payments.token_manager import TokenManager
from phonepe_payments.utils import compute_webhook_signature

DEFAULT_DB = "phonepe_audit.db"


def load_config() -> GatewayConfig:
    return GatewayConfig.from_env()


def create_client(args: argparse.Namespace) -> PhonePeClient:
    config = load_config()
    return PhonePeClient(config, audit_log=SQLiteAuditLog(args.db))


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def cmd_config(args: argparse.Namespace) -> int:
    config = load_config()
    print(f"PhonePe configuration ({config.environment}):")
    for key, value in config.summary().items():
        print(f"  {key}: {value}")
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    manager = TokenManager(load_config())
    token = manager.get_access_token()
    expires = datetime.fromtimestamp(token.expires_at, tz=timezone.utc)
    print(f"Access token obtained, expires at {expires.isoformat()}")
    if args.show:
        print(token.access_token)
    return 0


def cmd_pay(args: argparse.Namespace) -> int:
    client = create_client(args)
    extra = {"merchantOrderId": args.merchant_order_id} if args.merchant_order_id else None
    result = client.initiate_payment(args.amount, args.order_ref, extra=extra)
    print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_status(args: argparse.Namespace) -> int:
    client = create_client(args)
    result = client.check_status(args.merchant_order_id)
    print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_refund(args: argparse.Namespace) -> int:
    client = create_client(args)
    result = client.refund(args.merchant_order_id, args.amount, merchant_refund_id=args.merchant_refund_id)
    print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_sign(args: argparse.Namespace) -> int:
    salt_key = args.salt_key or os.environ.get("PHONEPE_WEBHOOK_SALT_KEY")
    if not salt_key:
        print("Sign error: --salt-key or PHONEPE_WEBHOOK_SALT_KEY is required")
        return 1
    if args.body_file == "-":
        raw_body = sys.stdin.buffer.read()
    else:
        with open(args.body_file, "rb") as f:
            raw_body = f.read()
    print(compute_webhook_signature(raw_body, salt_key, args.salt_index))
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    audit_log = SQLiteAuditLog(args.db)
    if args.order:
        records = audit_log.find_by_merchant_order_id(args.order)[-args.limit :]
        records.reverse()
    else:
        records = audit_log.list_records(limit=args.limit)
    if not records:
        print("No audit records found")
        return 0
    for record in records:
        print(
            f"#{record.id} {record.created_at.isoformat()} {record.event_type or '-'} {record.status.value}"
            f" order={record.merchant_order_id or '-'} refund={record.merchant_refund_id or '-'}"
            f" amount={record.amount if record.amount is not None else '-'}"
        )
        if record.error_message:
            print(f"    error: {record.error_message}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phonepe-payments",
        description="PhonePe Payments Command Line Interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s config
  %(prog)s pay 10000 ORDER-1
  %(prog)s status MO_5f0c2a
  %(prog)s refund MO_5f0c2a 5000
  %(prog)s sign webhook.json --salt-key secret
  %(prog)s --db phonepe_audit.db logs --limit 20
        """,
    )
    parser.add_argument("--db", default=DEFAULT_DB, help="Path of the SQLite audit log")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_parser = subparsers.add_parser("config", help="Show the resolved configuration (secrets masked)")
    config_parser.set_defaults(func=cmd_config)

    token_parser = subparsers.add_parser("token", help="Obtain an access token")
    token_parser.add_argument("--show", action="store_true", help="Print the token itself")
    token_parser.set_defaults(func=cmd_token)

    pay_parser = subparsers.add_parser("pay", help="Initiate a checkout payment")
    pay_parser.add_argument("amount", type=int, help="Amount in paise")
    pay_parser.add_argument("order_ref", help="Your order reference")
    pay_parser.add_argument("--merchant-order-id", help="Use this merchant order id instead of generating one")
    pay_parser.set_defaults(func=cmd_pay)

    status_parser = subparsers.add_parser("status", help="Check an order's status")
    status_parser.add_argument("merchant_order_id", help="Merchant order id")
    status_parser.set_defaults(func=cmd_status)

    refund_parser = subparsers.add_parser("refund", help="Refund an order")
    refund_parser.add_argument("merchant_order_id", help="Original merchant order id")
    refund_parser.add_argument("amount", type=int, help="Amount in paise")
    refund_parser.add_argument("--merchant-refund-id", help="Use this refund id instead of generating one")
    refund_parser.set_defaults(func=cmd_refund)

    sign_parser = subparsers.add_parser("sign", help="Compute the X-VERIFY header for a webhook body")
    sign_parser.add_argument("body_file", help="File holding the raw body, or - for stdin")
    sign_parser.add_argument("--salt-key", help="Webhook salt key (default: PHONEPE_WEBHOOK_SALT_KEY)")
    sign_parser.add_argument("--salt-index", type=int, default=1, help="Webhook salt index")
    sign_parser.set_defaults(func=cmd_sign)

    logs_parser = subparsers.add_parser("logs", help="Show recent audit log records")
    logs_parser.add_argument("--limit", type=positive_int, default=20, help="Number of records to show")
    logs_parser.add_argument("--order", help="Only records of this merchant order id")
    logs_parser.set_defaults(func=cmd_logs)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except PhonePePaymentsError as e:
        print(f"Error: {e}")
        return 1
    except OSError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
