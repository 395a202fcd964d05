"""Command-line interface for the backspin player."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from backspin.app import AppConfig, BackspinApp
from backspin.audio import query_devices
from backspin.errors import RateInputError
from backspin.utils import parse_rate


def _rate_arg(value: str) -> float:
    try:
        return parse_rate(value)
    except RateInputError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the backspin player."""
    parser = argparse.ArgumentParser(
        description="Play audio files side by side with shared speed control and reverse playback"
    )
    parser.add_argument(
        "sources",
        nargs="*",
        help="Audio files or http(s) URLs, one player each",
    )
    parser.add_argument(
        "--rate",
        type=_rate_arg,
        default=None,
        help="Playback rate to start with (0.1-16); saved as the new default",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop every player (reverse playback wraps around too)",
    )
    parser.add_argument(
        "--audio-device",
        type=str,
        default=None,
        help=(
            "Audio output device by index (e.g., 0, 1, 2) or name prefix (e.g., 'MacBook'). "
            "Use --list-audio-devices to see available devices."
        ),
    )
    parser.add_argument(
        "--list-audio-devices",
        action="store_true",
        help="List available audio output devices and exit",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding settings.json (defaults to ~/.config/backspin)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run without the interactive terminal UI",
    )
    return parser.parse_args(argv)


def list_audio_devices() -> None:
    """Print the output devices backspin can play through."""
    try:
        outputs = query_devices()
    except Exception as e:  # noqa: BLE001
        print(f"Cannot query audio devices: {e}")
        sys.exit(1)

    if not outputs:
        print("No audio output devices found")
        return
    print("Audio outputs:\n")
    for device in outputs:
        marker = " *" if device.is_default else ""
        print(
            f"  {device.index:>3}  {device.name}{marker}  "
            f"({device.output_channels} ch, {device.sample_rate:g} Hz)"
        )
    print("\n* system default. Pick one with --audio-device <index|name prefix>.")


def main() -> int:
    """Run the CLI player."""
    args = parse_args(sys.argv[1:])
    if args.list_audio_devices:
        list_audio_devices()
        return 0

    config = AppConfig(
        sources=list(args.sources),
        rate=args.rate,
        loop=args.loop,
        audio_device=args.audio_device,
        config_dir=args.config_dir,
        log_level=args.log_level,
        headless=args.headless,
    )

    app = BackspinApp(config)
    return asyncio.run(app.run())


if __name__ == "__main__":
    raise SystemExit(main())
