#!/usr/bin/env python3
"""
Dev helper: replay an SNS notification envelope against the local backend.

SNS signs every envelope, so the backend only accepts envelopes captured from
a real delivery (e.g. logged by a staging deployment or copied from an SQS
subscription of the same topic). This script reads such an envelope from a
JSON file and POST-s it to /inbound-notifications exactly the way SNS does:
JSON body, text/plain content type and the x-amz-sns-message-type header.

Usage
-----
# Replay a captured envelope against localhost:8000
python scripts/send_test_notification.py --file envelope.json

# Target a different backend URL
python scripts/send_test_notification.py --file envelope.json --url http://staging.example.com

# Show what would be sent
python scripts/send_test_notification.py --file envelope.json --dry-run
"""

import argparse
import json
import sys
import textwrap
from pathlib import Path

import httpx


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if response.is_success else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    if not response.content:
        return
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def _summarize(envelope: dict) -> None:
    message = envelope.get("Message", "")
    print(f"Type      : {envelope.get('Type')}")
    print(f"TopicArn  : {envelope.get('TopicArn')}")
    print(f"MessageId : {envelope.get('MessageId')}")
    print(f"Message   : <{len(message):,} chars>")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    parser = argparse.ArgumentParser(
        prog="send_test_notification.py",
        description=textwrap.dedent("""\
            Replay a captured SNS notification envelope against the
            inbound email ingress.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--file",
        required=True,
        metavar="PATH",
        help="Path to the SNS envelope JSON file.",
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the envelope summary without sending it.",
    )

    args = parser.parse_args()

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"ERROR: File not found: {file_path}", file=sys.stderr)
        return 1

    body = file_path.read_bytes()
    try:
        envelope = json.loads(body)
    except ValueError as exc:
        print(f"ERROR: {file_path} is not valid JSON: {exc}", file=sys.stderr)
        return 1

    endpoint = f"{args.url.rstrip('/')}/inbound-notifications"
    print(f"Endpoint  : {endpoint}")
    _summarize(envelope)

    if args.dry_run:
        print("\n[DRY RUN] Not sent.")
        return 0

    headers = {
        "Content-Type": "text/plain; charset=UTF-8",
        "x-amz-sns-message-type": str(envelope.get("Type", "")),
    }

    try:
        response = httpx.post(endpoint, content=body, headers=headers, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn ingress.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
