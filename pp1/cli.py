#!/usr/bin/env python3
"""Thin CLI around the `pp1` library.

Stitch input is JSON: a list of [x, y, command, color_index] rows as produced
by the PES import step. Device commands take a BLE address, or --mock to run
against the simulated machine.
"""

import argparse
import asyncio
import json
import logging
import sys

from . import errors
from .constants import PP1Config
from .driver import BrotherPP1
from .pen import encode_stitches
from .stitches import color_blocks
from .timing import calculate_pattern_time
from .transport import BleakTransport, MockTransport

logger = logging.getLogger("pp1")


def load_stitches(path: str) -> list:
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("stitches", [])
    return data


def cmd_encode(args) -> int:
    stitches = load_stitches(args.stitches)
    try:
        enc = encode_stitches(stitches)
    except errors.CoordinateOutOfRangeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    blocks = color_blocks(stitches)
    times = calculate_pattern_time(blocks, 0)
    print(f"stitches:     {len(stitches)}")
    print(f"color blocks: {len(blocks)}")
    print(f"pen records:  {enc.record_count} ({len(enc.pen_bytes)} bytes)")
    print(f"bounds:       {enc.bounds.to_dict()}")
    print(f"est. time:    {times['total_minutes']} min")
    if args.hex:
        print(enc.pen_bytes.hex())
    return 0


async def _open(args) -> BrotherPP1:
    config = PP1Config.from_env()
    driver = BrotherPP1(config)
    if args.mock or config.mock_device:
        transport = MockTransport(auto_respond=True)
    else:
        transport = BleakTransport(args.address)
        await transport.connect()
    await driver.connect(transport)
    return driver


async def _run_device(args) -> int:
    try:
        driver = await _open(args)
    except errors.PP1Error as e:
        print(f"error ({e.kind.value}): {e}", file=sys.stderr)
        return 2
    try:
        if args.cmd == "info":
            print(json.dumps(vars(await driver.get_machine_info()), indent=2))
        elif args.cmd == "state":
            state = await driver.get_machine_state()
            progress = await driver.get_sewing_progress()
            status = getattr(state.status, "name", state.status)
            print(f"status={status} error={state.error:#04x}")
            print(json.dumps(vars(progress), indent=2))
        elif args.cmd == "upload":
            def show(pct: float):
                print(f"\rupload {pct:5.1f}%", end="", flush=True)

            enc, result = await driver.upload_stitches(
                load_stitches(args.stitches), on_progress=show
            )
            print()
            if not result.ok:
                print(
                    f"upload failed at {result.failed_step.value}: {result.message}",
                    file=sys.stderr,
                )
                return 2
            print(f"uploaded {len(enc.pen_bytes)} bytes, uuid={result.uuid.hex()}")
            if args.start:
                await driver.start_sewing()
        return 0
    except errors.PP1Error as e:
        print(f"error ({e.kind.value}): {e}", file=sys.stderr)
        return 2
    finally:
        await driver.disconnect()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Brother PP1 embroidery CLI")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("encode", help="encode a stitch list to PEN")
    p.add_argument("stitches")
    p.add_argument("--hex", action="store_true", help="print PEN bytes as hex")

    for name, help_text in (("info", "machine info"), ("state", "machine state")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("address", nargs="?")
        p.add_argument("--mock", action="store_true")

    p = sub.add_parser("upload", help="encode and upload a stitch list")
    p.add_argument("stitches")
    p.add_argument("address", nargs="?")
    p.add_argument("--mock", action="store_true")
    p.add_argument("--start", action="store_true", help="start sewing after upload")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.cmd == "encode":
        return cmd_encode(args)

    if args.cmd in ("info", "state", "upload"):
        if not args.mock and not args.address and not PP1Config.from_env().mock_device:
            parser.error("address is required unless --mock is given")
        return asyncio.run(_run_device(args))

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
