#!/usr/bin/env python3
"""Follow a single ESPresense device and print every room change.

Configuration comes from ``ESPRESENSE_*`` environment variables; command-line
options override them.

Example::

    ESPRESENSE_BROKER=mqtt.local python scripts/track_device.py \\
        --topic-base espresense/devices --device-id phone:timsiphone
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyespresense import EspresenseConfigError, PresenceTracker, PresenceUpdate, TrackerConfig  # noqa: E402

_LOG = logging.getLogger("track_device")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Track the closest ESPresense room of one device.",
    )
    parser.add_argument("--broker", help="MQTT broker host[:port].")
    parser.add_argument("--topic-base", help="ESPresense topic base, e.g. espresense/devices.")
    parser.add_argument("--device-id", help="Tracked device id, e.g. phone:timsiphone.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before room data is considered stale (5-120).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--status-seconds",
        type=int,
        default=60,
        help="Print the current readings every N seconds (0 = never).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _build_config(args: argparse.Namespace) -> TrackerConfig:
    overrides: dict[str, Any] = {}
    if args.broker:
        overrides["broker"] = args.broker
    if args.topic_base:
        overrides["topic_base"] = args.topic_base
    if args.device_id:
        overrides["device_id"] = args.device_id
    if args.timeout is not None:
        overrides["data_timeout"] = args.timeout
    if args.verbose:
        overrides["log_enable"] = True
    return TrackerConfig.from_env(**overrides)


def _print_update(update: PresenceUpdate, tracker_tz: Any) -> None:
    attributes = update.attributes(tracker_tz)
    print(f"[track] {update.description}")
    print(json.dumps(attributes, ensure_ascii=False, sort_keys=True))


async def _run(config: TrackerConfig, args: argparse.Namespace) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    tz = config.zone
    async with PresenceTracker(config, on_update=lambda update: _print_update(update, tz)) as tracker:
        print(f"[track] Following {config.device_id} on {config.broker_address} ({config.topic_filter})")
        elapsed = 0
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=1.0)
            except TimeoutError:
                pass
            elapsed += 1

            if args.duration > 0 and elapsed >= args.duration:
                print(f"[track] Reached --duration={args.duration}s, stopping.")
                break

            if args.status_seconds > 0 and elapsed % args.status_seconds == 0:
                connection = tracker.connection
                phase = connection.phase if connection is not None else "stopped"
                readings = {room: reading.distance for room, reading in tracker.readings().items()}
                print(f"[track] phase={phase} readings={json.dumps(readings, sort_keys=True)}")

        print("[track] Final state")
        print(json.dumps(tracker.attributes(), ensure_ascii=False, sort_keys=True))


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = _build_config(args)
    try:
        config.validate()
    except EspresenseConfigError as exc:
        print(f"[track] {exc}", file=sys.stderr)
        return 2

    try:
        asyncio.run(_run(config, args))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
