# src/cli/tadi_request.py

"""CLI entrypoint: submit one shipment-tracking request to the oracle network."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import aiohttp
from pydantic import ValidationError
from web3.exceptions import Web3Exception

from common.config import Config
from common.errors import ConfigError, FulfillmentTimeoutError, TadiError
from common.logging_utils import configure_logging, log_event
from common.schemas.fulfillment import FulfillmentReport
from common.schemas.request_models import TrackingRequestConfig
from orchestrator.ledger_client import LedgerClient
from orchestrator.tracking_workflow import TrackingRequestWorkflow
from secrets_store.store_client import SecretStoreClient


# Must match the secrets.<name> the bundled source reads
DEFAULT_SECRET_NAME = "trackingKey"
DEFAULT_SOURCE_PATH = Path(__file__).parent / "sources" / "tracking_source.js"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tadi-request",
        description="Submit a shipment-tracking request to the oracle network and wait for fulfillment.",
    )
    parser.add_argument(
        "--source",
        default=str(DEFAULT_SOURCE_PATH),
        help="Path to the off-chain source file (default: bundled DHL tracking source)",
    )
    parser.add_argument(
        "--arg",
        action="append",
        default=[],
        help="Request argument passed to the source (repeatable), e.g. a tracking number",
    )
    secrets = parser.add_mutually_exclusive_group()
    secrets.add_argument(
        "--secrets-url",
        action="append",
        help="Remote secrets URL (repeatable). Replaces inline secrets.",
    )
    secrets.add_argument(
        "--no-secrets",
        action="store_true",
        help="Submit the request without secrets",
    )
    parser.add_argument(
        "--secret-name",
        default=DEFAULT_SECRET_NAME,
        help=f"Key under which the tracking API key is exposed to the source (default: {DEFAULT_SECRET_NAME})",
    )
    return parser


def build_request(args: argparse.Namespace, config: Config) -> TrackingRequestConfig:
    try:
        source = Path(args.source).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read source file {args.source}: {e}") from e

    if args.no_secrets:
        secrets = None
    elif args.secrets_url:
        secrets = args.secrets_url
    else:
        if not config.TRACKING_API_KEY:
            raise ConfigError("TADI_TRACKING_API_KEY environment variable not set")
        secrets = {args.secret_name: config.TRACKING_API_KEY}

    return TrackingRequestConfig(
        source=source,
        args=args.arg,
        subscription_id=config.SUBSCRIPTION_ID,
        request_gas=config.REQUEST_GAS_LIMIT,
        secrets=secrets,
    )


async def run(request: TrackingRequestConfig, config: Config) -> FulfillmentReport:
    ledger = LedgerClient.from_config(config)

    async with aiohttp.ClientSession() as session:
        store_client = SecretStoreClient(session, base_url=config.STORE_API_URL)
        workflow = TrackingRequestWorkflow(config, ledger, store_client, session)
        return await workflow.run(request)


def print_report(report: FulfillmentReport) -> None:
    print(f"Request {report.request_id} fulfilled!")
    if report.has_response:
        print(f"Response returned to client contract as hex: 0x{report.response.hex()}")
        print(f"Response as text: {report.response_as_text()}")
    else:
        print("Empty response returned to client contract")

    if report.remote_error:
        print(f'Error message returned to client contract: "{report.remote_error}"', file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = Config.from_env()
    configure_logging(config)

    try:
        request = build_request(args, config)
        report = asyncio.run(run(request, config))
    except FulfillmentTimeoutError as e:
        print(str(e), file=sys.stderr)
        return 1
    except TadiError as e:
        log_event("tracking_request_failed", error=e.category, level="error")
        print(f"Error [{e.category}]: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Error [config]: invalid request\n{e}", file=sys.stderr)
        return 1
    except (Web3Exception, aiohttp.ClientError) as e:
        log_event("tracking_request_failed", error="ledger", level="error")
        print(f"Error [ledger]: {e!r}", file=sys.stderr)
        return 1

    # A remote code error is a fulfilled request, reported but not a failure
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
