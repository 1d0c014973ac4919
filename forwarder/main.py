#!/usr/bin/env python3
"""
mackerel-cloudwatch-forwarder

Flow:
- Load config: YAML (--config), then environment (.env supported), then CLI flags
- Every --interval seconds (aligned to the clock), fetch the last complete
  minute of the configured CloudWatch metrics and post them to Mackerel
- Values that could not be posted are retried on the next run, for up to 6 hours
- --once runs a single invocation and exits non-zero if it failed
"""

import argparse
import asyncio
import logging
import time
from functools import partial
from pathlib import Path
from typing import Any, List, Union

from .apikey import ApiKeyResolver
from .config import ForwarderConfig
from .errors import ForwarderError, InvalidSpecError
from .forwarder import Forwarder
from .models import parse_metric_specs

logger = logging.getLogger("forwarder.main")


def build_forwarder(config: ForwarderConfig) -> Forwarder:
    """Wire the boto3 adapters and the Mackerel client settings."""
    from .aws import CloudWatchRetrieval, KMSDecrypter, SSMParameterStore

    resolver = ApiKeyResolver(
        api_key=config.api_key,
        api_key_parameter=config.api_key_parameter,
        with_decrypt=config.api_key_with_decrypt,
        parameter_store=partial(SSMParameterStore, region_name=config.aws_region),
        decrypter=partial(KMSDecrypter, region_name=config.aws_region),
    )
    return Forwarder(
        retrieval=CloudWatchRetrieval(region_name=config.aws_region),
        api_key_resolver=resolver,
        base_url=config.base_url,
    )


def seconds_until_next_run(interval: int, now: float) -> float:
    return interval - (now % interval)


async def forward_loop(config: ForwarderConfig, forwarder: Forwarder, payload: Union[str, List[Any]]) -> bool:
    """
    Run invocations until interrupted (or once).

    Returns:
        True if the last invocation succeeded
    """
    logger.info("forwarder starting; running every %ss", config.interval)
    ok = True

    while True:
        try:
            await forwarder.forward_metrics(payload, timeout=config.timeout)
            ok = True
        except ForwarderError as e:
            ok = False
            logger.error("forward failed: %s", e)
        except Exception as e:
            ok = False
            logger.exception("unexpected error during forward: %s", e)

        if config.once:
            break
        await asyncio.sleep(seconds_until_next_run(max(1, config.interval), time.time()))

    return ok


def main():
    parser = argparse.ArgumentParser(description="forward metrics of AWS CloudWatch to Mackerel")
    parser.add_argument("--config", "-c", type=Path, default=Path("config.yml"),
                        help="YAML configuration file (default: config.yml)")
    parser.add_argument("--settings-file", dest="settings_file",
                        help="JSON file with the forward settings (array of metric specs)")
    parser.add_argument("--interval", type=int,
                        help="seconds between invocations")
    parser.add_argument("--timeout", type=float,
                        help="time budget of one invocation in seconds")
    parser.add_argument("--once", action="store_true",
                        help="run one invocation and exit")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="logging level")
    args = parser.parse_args()

    # Load config: YAML first, then environment, then CLI overrides
    config = ForwarderConfig.from_file(args.config).override_with_env().override_with_args(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    payload = config.load_settings()
    try:
        specs = parse_metric_specs(payload)
    except InvalidSpecError as e:
        raise SystemExit(f"ERROR: {e}")
    if not specs:
        logger.warning("no metrics are configured")

    forwarder = build_forwarder(config)
    try:
        ok = asyncio.run(forward_loop(config, forwarder, payload))
    except KeyboardInterrupt:
        print("\nInterrupted. Bye!")
        return
    if not ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
