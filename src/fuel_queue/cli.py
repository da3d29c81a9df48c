"""Command line entry point for operating station queues.

Usage:
    fuel-queue submit --car car-1 --station st-1 --fuel-type Diesel --amount 20
    fuel-queue advance 12 start
    fuel-queue advance 12 complete --served-amount 18.5
    fuel-queue station st-1
    fuel-queue stats st-1 --day 2026-10-19
    fuel-queue watch
"""

import argparse
import json
import logging
import sys
import time
from collections.abc import Sequence
from datetime import date
from typing import Any

from pydantic import BaseModel

from .config import Config
from .coordinator import QueueCoordinator
from .errors import QueueError
from .events import QUEUE_ENTITY, ChangeEvent, EventBus
from .mqtt import MQTTChangeFeed
from .mqtt_instance import get_broadcaster, shutdown_broadcaster
from .schemas import FuelType, QueueAction
from .store import QueueStore, create_session_factory

logger = logging.getLogger(__name__)


def _dump(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    if isinstance(value, list):
        return json.dumps(
            [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value],
            indent=2,
        )
    return json.dumps(value, indent=2)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fuel-queue", description="Fuel station queue operations")
    parser.add_argument("--database-url", default=Config.DATABASE_URL)
    parser.add_argument("--broadcast", choices=["mqtt", "none"], default=Config.BROADCAST_TYPE)
    parser.add_argument("--mqtt-broker", default=Config.MQTT_BROKER)
    parser.add_argument("--mqtt-port", type=int, default=Config.MQTT_PORT)
    parser.add_argument("--log-level", default=Config.LOG_LEVEL)
    sub = parser.add_subparsers(dest="cmd", required=True)

    _ = sub.add_parser("init-db", help="Create the fuel_queue table")

    p_submit = sub.add_parser("submit", help="Put a car in a station's queue")
    p_submit.add_argument("--car", required=True, help="car account id")
    p_submit.add_argument("--station", required=True, help="station account id")
    p_submit.add_argument(
        "--fuel-type", default=FuelType.diesel.value, choices=[f.value for f in FuelType]
    )
    p_submit.add_argument("--amount", type=float, required=True, help="requested litres")

    p_advance = sub.add_parser("advance", help="Start, complete, skip or cancel an entry")
    p_advance.add_argument("entry_id", type=int)
    p_advance.add_argument("action", choices=[a.value for a in QueueAction])
    p_advance.add_argument("--served-amount", type=float, default=None, help="litres served")

    p_withdraw = sub.add_parser("withdraw", help="Delete an entry on behalf of its car")
    p_withdraw.add_argument("entry_id", type=int)

    p_renumber = sub.add_parser("renumber", help="Compact a station's pending positions")
    p_renumber.add_argument("station")

    p_station = sub.add_parser("station", help="Active queue of a station")
    p_station.add_argument("station")

    p_car = sub.add_parser("car", help="Active entries of a car with cars ahead")
    p_car.add_argument("car")

    p_stats = sub.add_parser("stats", help="Daily counters of a station")
    p_stats.add_argument("station")
    p_stats.add_argument("--day", type=date.fromisoformat, default=None, help="YYYY-MM-DD")

    p_history = sub.add_parser("history", help="Completed entries of a station")
    p_history.add_argument("station")
    p_history.add_argument("--limit", type=int, default=None)

    _ = sub.add_parser("sizes", help="Active queue size per station")

    p_watch = sub.add_parser("watch", help="Print change events from the broker")
    p_watch.add_argument("--topic", default=Config.MQTT_TOPIC)

    return parser


def _watch(args: argparse.Namespace) -> int:
    bus = EventBus()

    def print_event(event: ChangeEvent) -> None:
        print(event.model_dump_json(), flush=True)

    _ = bus.subscribe(QUEUE_ENTITY, print_event)
    feed = MQTTChangeFeed(args.mqtt_broker, args.mqtt_port, args.topic, bus)
    if not feed.connect():
        logger.error(f"Cannot reach MQTT broker {args.mqtt_broker}:{args.mqtt_port}")
        return 1

    logger.info(f"Watching {feed.subscription_topic} on {args.mqtt_broker}:{args.mqtt_port}")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        feed.disconnect()
    return 0


def run(args: argparse.Namespace, coordinator: QueueCoordinator) -> Any:
    """Dispatch a parsed command and return what should be printed."""
    if args.cmd == "init-db":
        return {"database_url": args.database_url, "status": "ok"}
    if args.cmd == "submit":
        return coordinator.submit_request(args.car, args.station, args.fuel_type, args.amount)
    if args.cmd == "advance":
        return coordinator.advance(args.entry_id, args.action, served_amount=args.served_amount)
    if args.cmd == "withdraw":
        coordinator.withdraw(args.entry_id)
        return {"entry_id": args.entry_id, "status": "deleted"}
    if args.cmd == "renumber":
        return {"station_user_id": args.station, "pending": coordinator.renumber_pending(args.station)}
    if args.cmd == "station":
        return coordinator.list_active_for_station(args.station)
    if args.cmd == "car":
        return coordinator.list_active_for_car(args.car)
    if args.cmd == "stats":
        return coordinator.daily_stats(args.station, args.day)
    if args.cmd == "history":
        if args.limit is not None:
            return coordinator.list_recent_completed(args.station, limit=args.limit)
        return coordinator.station_history(args.station)
    if args.cmd == "sizes":
        return coordinator.active_queue_sizes()
    raise ValueError(f"Unknown command: {args.cmd}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper())

    if args.cmd == "watch":
        return _watch(args)

    broadcaster = get_broadcaster(
        broadcast_type=args.broadcast,
        broker=args.mqtt_broker,
        port=args.mqtt_port,
    )
    try:
        store = QueueStore(create_session_factory(args.database_url))
        coordinator = QueueCoordinator(store, broadcaster=broadcaster)
        result = run(args, coordinator)
    except QueueError as e:
        logger.error(f"{args.cmd} failed: {e.message}")
        print(json.dumps(e.to_message()), file=sys.stderr)
        return 1
    finally:
        shutdown_broadcaster()

    print(_dump(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
