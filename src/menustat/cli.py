"""Entry point for the menustat command line tool."""

import argparse
import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any

from menustat.config import SamplerConfig, mailjet_credentials
from menustat.delivery import LogDelivery, MailjetDelivery, NotificationDelivery
from menustat.formatting import (
    RateUnit,
    format_duration,
    format_rate,
    format_temperature,
    format_time_remaining,
)
from menustat.models import Snapshot
from menustat.network import ALL_INTERFACES
from menustat.sampler import Sampler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sample host telemetry and show it live.")
    parser.add_argument("--interval", type=float, default=2.0, help="fast sampling interval in seconds")
    parser.add_argument("--power-interval", type=float, default=30.0, help="power sampling interval in seconds")
    parser.add_argument("--interface", default=ALL_INTERFACES, help="network interface to measure, or 'All'")
    parser.add_argument("--bits", action="store_true", help="show network rates in bits per second")
    parser.add_argument("--no-auto-scale", action="store_true", help="always show rates in base units")
    parser.add_argument("--top", type=int, default=5, help="number of top processes to list")
    parser.add_argument("--notify-from", default="", help="sender address for UPS power notifications")
    parser.add_argument("--notify-to", default="", help="recipient address (defaults to the sender)")
    parser.add_argument("--once", action="store_true", help="print one snapshot and exit")
    parser.add_argument("--json", action="store_true", help="print one snapshot as JSON and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="log collector activity")
    return parser


def config_from_args(args: argparse.Namespace) -> SamplerConfig:
    return SamplerConfig(
        fast_interval=args.interval,
        slow_interval=args.power_interval,
        selected_interface=args.interface,
        rate_unit=RateUnit.BITS if args.bits else RateUnit.BYTES,
        auto_scale=not args.no_auto_scale,
        process_count=args.top,
        email_enabled=bool(args.notify_from),
        from_address=args.notify_from,
        to_address=args.notify_to,
    )


def build_delivery(config: SamplerConfig) -> NotificationDelivery:
    credentials = mailjet_credentials()
    if config.email_enabled and credentials is not None:
        return MailjetDelivery(*credentials)
    if config.email_enabled:
        logger.warning("MAILJET_API_KEY/MAILJET_API_SECRET not set; notifications will only be logged")
    return LogDelivery()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = config_from_args(args)
    except ValueError as exc:
        build_parser().error(str(exc))

    sampler = Sampler(config, delivery=build_delivery(config))

    if args.json or args.once:
        with sampler:
            snapshot = sampler.refresh_all()
        print(snapshot_to_json(snapshot) if args.json else format_snapshot(snapshot, config))
        return

    from menustat.app import MenustatApp

    try:
        MenustatApp(sampler).run()
    finally:
        sampler.close()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def snapshot_to_json(snapshot: Snapshot) -> str:
    return json.dumps(asdict(snapshot), default=_json_default, ensure_ascii=False, indent=2)


def format_snapshot(snapshot: Snapshot, config: SamplerConfig) -> str:
    up_value, up_unit = format_rate(snapshot.network.upload, config.rate_unit, config.auto_scale)
    down_value, down_unit = format_rate(snapshot.network.download, config.rate_unit, config.auto_scale)
    power = snapshot.power
    lines = [
        f"Time: {snapshot.timestamp:%Y-%m-%d %H:%M:%S}",
        f"Host: {snapshot.system.model_name} ({snapshot.system.chip}), {snapshot.system.os_version}",
        f"Uptime: {format_duration(snapshot.system.uptime)}",
        f"CPU: {snapshot.cpu_usage:.1f}% | {format_temperature(snapshot.cpu_temperature)}",
        f"Memory: {snapshot.memory.used_gb:.1f} / {snapshot.memory.total_gb:.1f} GB",
        f"Disk: {snapshot.disk.free_gb:.1f} GB free of {snapshot.disk.total_gb:.1f} GB",
        f"Network ({config.selected_interface}): up {up_value} {up_unit} | down {down_value} {down_unit}",
        f"Power: {power.total_system_power:.1f} W{' (estimate)' if power.is_estimate else ''}"
        f" | CPU {power.cpu_power:.1f} W | GPU {power.gpu_power:.1f} W",
    ]
    if snapshot.battery.present:
        lines.append(
            f"Battery: {snapshot.battery.charge_level:.0f}%"
            f"{' charging' if snapshot.battery.is_charging else ''}"
            f" | {format_time_remaining(snapshot.battery.time_remaining)}"
        )
    if snapshot.ups.present:
        lines.append(
            f"UPS: {snapshot.ups.name} {snapshot.ups.charge_level:.0f}% | {snapshot.ups.power_source.value}"
        )
    lines.append("Top CPU:")
    lines.extend(f"  {p.pid:>7} {p.cpu_percent:5.1f}%  {p.name}" for p in snapshot.top_cpu_processes)
    lines.append("Top memory:")
    lines.extend(f"  {p.pid:>7} {p.memory_percent:5.1f}%  {p.name}" for p in snapshot.top_memory_processes)
    return "\n".join(lines)


if __name__ == "__main__":
    main()
