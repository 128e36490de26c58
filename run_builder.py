#!/usr/bin/env python3
"""
OTP wallet tree builder.

Builds a wallet's Merkle tree from an authenticator seed and prints its cores;
with storage enabled the tree is persisted and can later be spent from:

    python run_builder.py build --seed JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP \\
                                --version 16 --address 0xabc... --db data/otpwallet.db
    python run_builder.py spend --seed JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP \\
                                --address 0xabc... --dest 0xdef... --amount 1000

Environment variables (see otpwallet_core.config):
    OTPWALLET_INTERVAL, OTPWALLET_DURATION, OTPWALLET_SLOT_SIZE, OTPWALLET_WORKERS,
    OTPWALLET_DB_PATH, OTPWALLET_LOG_LEVEL, OTPWALLET_LOG_FMT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
import time

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from otpwallet_core.commit_reveal import prepare_commit_reveal, regenerate_eotp  # noqa: E402
from otpwallet_core.config import OTPWalletConfig, load_config  # noqa: E402
from otpwallet_core.errors import OTPWalletError  # noqa: E402
from otpwallet_core.hashing import hexstring  # noqa: E402
from otpwallet_core.logging_config import setup_logging  # noqa: E402
from otpwallet_core.merkle import BuildResult  # noqa: E402
from otpwallet_core.operations import TransferOperation  # noqa: E402
from otpwallet_core.otp import base32_to_seed  # noqa: E402
from otpwallet_core.security import security_parameters  # noqa: E402
from otpwallet_core.storage import TreeStore  # noqa: E402
from otpwallet_core.worker import BuildRequest, TreeBuildWorker, WorkerMessage  # noqa: E402

logger = logging.getLogger("otpwallet.builder")

STAGE_NAMES = ("otp", "leaves", "layers", "inner")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_version(text: str) -> tuple[int, int]:
    major, _, minor = text.partition(".")
    return int(major), int(minor or 0)


# ===================================================================
#  Commands
# ===================================================================

def _log_progress(message: WorkerMessage) -> None:
    if message.status == "working":
        logger.debug(
            f"{STAGE_NAMES[message.stage]}: {message.current}/{message.total}",
            extra={"salt": message.salt, "stage": message.stage},
        )


async def cmd_build(args, cfg: OTPWalletConfig) -> dict:
    builder = cfg.builder
    interval, duration, slot_size, multi_code = (
        builder.interval, builder.duration, builder.slot_size, builder.multi_code,
    )
    if args.version:
        params = security_parameters(*_parse_version(args.version))
        interval, duration, slot_size, multi_code = (
            params.interval, params.duration, params.slot_size, params.multi_code,
        )
        if args.seed2 and not params.double_otp:
            raise OTPWalletError(f"Wallet version {args.version} has no second factor")
    if args.duration:
        duration = args.duration
    if args.multi_code is not None:
        multi_code = args.multi_code

    request = BuildRequest(
        seed=base32_to_seed(args.seed),
        seed2=base32_to_seed(args.seed2) if args.seed2 else None,
        effective_time=args.effective_time if args.effective_time is not None else _now_ms(),
        duration=duration,
        interval=interval,
        slot_size=slot_size,
        randomness=args.randomness,
        multi_code=multi_code,
    )
    with TreeBuildWorker(
        max_workers=cfg.worker.max_workers,
        on_message=_log_progress,
        report_interval=builder.report_interval or None,
    ) as worker:
        ticket = worker.submit(request)
        await asyncio.wrap_future(ticket.future)
        result = worker.result(ticket)

    out = {
        "build_id": hexstring(result.build_id),
        "root": hexstring(result.root),
        "hseed": hexstring(result.hseed),
        "effective_time": result.effective_time,
        **result.cores(),
    }
    if cfg.storage.enabled:
        with TreeStore(cfg.storage.path) as store:
            build_id = store.save_build(result)
            if args.address:
                store.set_wallet_build(args.address, build_id)
    return out


def _load_tree(args, cfg: OTPWalletConfig) -> BuildResult:
    if not cfg.storage.enabled:
        raise OTPWalletError("spend needs a tree store (--db or OTPWALLET_DB_PATH)")
    with TreeStore(cfg.storage.path) as store:
        if args.address:
            result = store.load_wallet(args.address)
        else:
            build_id = args.build
            if args.root:
                builds = store.find_builds(args.root)
                if len(builds) > 1:
                    raise OTPWalletError(
                        f"{len(builds)} builds share root {args.root}; pick one with --build"
                    )
                build_id = builds[0] if builds else None
            result = store.load_build(build_id) if build_id else None
    if result is None:
        raise OTPWalletError(
            f"No stored tree for {args.address or args.root or args.build}"
        )
    return result


async def cmd_spend(args, cfg: OTPWalletConfig) -> dict:
    result = _load_tree(args, cfg)
    when = args.time if args.time is not None else _now_ms()
    index, eotp = regenerate_eotp(
        base32_to_seed(args.seed), result.hseed, result.tree, when, args.slot,
    )
    bundle = prepare_commit_reveal(
        result.tree, index, eotp, TransferOperation(args.dest, args.amount), args.slot,
    )
    logger.info(f"Prepared transfer at index {index} slot {args.slot}")
    return bundle.to_dict()


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="OTP wallet tree builder")
    p.add_argument("--config", default=None, help="Path to otpwallet.toml config file")
    p.add_argument("--db", default=None, help="Tree store path (enables storage)")
    p.add_argument("--log-level", default=None, help="Override logging level")
    sub = p.add_subparsers(dest="command", required=True)

    b = sub.add_parser("build", help="Build a wallet tree")
    b.add_argument("--seed", required=True, help="Base32 authenticator seed")
    b.add_argument("--seed2", default=None, help="Base32 second-factor seed")
    b.add_argument("--effective-time", type=int, default=None,
                   help="Wallet start in ms (default: now)")
    b.add_argument("--duration", type=int, default=None, help="Lifetime in ms")
    b.add_argument("--version", default=None,
                   help="Wallet version (major[.minor]) to take the schedule from")
    b.add_argument("--multi-code", type=int, default=None,
                   help="Codes per multi-code leaf (0 disables)")
    b.add_argument("--randomness", type=int, default=None,
                   help="32-bit value for the randomness inner tree")
    b.add_argument("--address", default=None, help="Point this wallet address at the tree")

    s = sub.add_parser("spend", help="Prepare commit/reveal for a transfer")
    s.add_argument("--seed", required=True, help="Base32 authenticator seed")
    target = s.add_mutually_exclusive_group(required=True)
    target.add_argument("--address", help="Wallet address in the tree store")
    target.add_argument("--root", help="Tree root in the tree store")
    target.add_argument("--build", help="Build id in the tree store")
    s.add_argument("--dest", required=True, help="Destination address")
    s.add_argument("--amount", type=int, required=True, help="Amount in wei")
    s.add_argument("--time", type=int, default=None, help="Spend time in ms (default: now)")
    s.add_argument("--slot", type=int, default=0, help="Operation slot")
    return p.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    cfg = load_config(args.config)
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    try:
        if args.command == "build":
            out = await cmd_build(args, cfg)
        else:
            out = await cmd_spend(args, cfg)
    except (OTPWalletError, ValueError) as exc:
        logger.error(f"{args.command} failed: {exc}")
        return 1
    print(json.dumps(out, indent=2))
    return 0


def main_sync():
    """Synchronous entry point for console_scripts."""
    code = 1
    with contextlib.suppress(KeyboardInterrupt):
        code = asyncio.run(main())
    sys.exit(code)


if __name__ == "__main__":
    main_sync()
