"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog
import uvicorn

from healthbot.config import Settings, get_settings
from healthbot.logger import setup_logging

logger = structlog.get_logger(__name__)


async def _authorize_url(settings: Settings, device_id: str) -> str | None:
    from healthbot.integrations import DeviceIntegrationService
    from healthbot.storage.database import init_db
    from healthbot.storage.kv import create_store

    if settings.storage_backend == "sqlite":
        await init_db(settings.database_url)
    kv = create_store(settings)
    try:
        return await DeviceIntegrationService(kv, settings).authorization_url(device_id)
    finally:
        await kv.close()


async def _ble_stream(device_class: str, seconds: float) -> int:
    from healthbot.bluetooth.bleak_backend import BleakGattBackend
    from healthbot.bluetooth.client import BluetoothDeviceClient, DeviceClass
    from healthbot.models import HealthReading

    async def _print(reading: HealthReading) -> None:
        print(f"{reading.timestamp.isoformat()}  {reading.type.value}  {reading.value} {reading.unit}")

    client = BluetoothDeviceClient(DeviceClass(device_class), BleakGattBackend(), _print)
    name = await client.connect()
    print(f"Streaming from {name} for {seconds:g}s (Ctrl+C to stop)")
    try:
        await asyncio.sleep(seconds)
    finally:
        await client.disconnect()
    return client.dropped_samples


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="healthbot",
        description="HealthBot device integrations: OAuth providers, BLE devices, health data.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── authorize-url ─────────────────────────────────────────
    auth_parser = sub.add_parser("authorize-url", help="Print a provider authorization URL.")
    auth_parser.add_argument("device_id")

    # ── ble-stream ────────────────────────────────────────────
    ble_parser = sub.add_parser("ble-stream", help="Stream readings from a Bluetooth LE device.")
    ble_parser.add_argument("device_class", choices=["heart_rate", "scale"])
    ble_parser.add_argument("--seconds", type=float, default=30.0)

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "healthbot.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from healthbot.storage.database import init_db

        asyncio.run(init_db(settings.database_url))
        print("Database tables created.")
    elif args.command == "authorize-url":
        url = asyncio.run(_authorize_url(settings, args.device_id))
        if url is None:
            print(f"OAuth not configured for {args.device_id}", file=sys.stderr)
            sys.exit(1)
        print(url)
    elif args.command == "ble-stream":
        from healthbot.errors import IntegrationError

        try:
            dropped = asyncio.run(_ble_stream(args.device_class, args.seconds))
        except IntegrationError as exc:
            logger.error("cli.ble_stream_failed", error=exc.message, details=exc.details)
            print(f"{exc.message}", file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            return
        if dropped:
            print(f"{dropped} malformed samples dropped")
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
