from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from .backends import BackendRegistry, enabled_backends
from .batch import discover, log_summary, run_batch, write_summary
from .config import RomcompSettings, cli_overrides_from_args
from .errors import FatalConfigError, UnreadableInputError
from .logging import bind_run, configure, log_event
from .sniffer import sniff
from .tool_check import probe_tool


EXIT_OK = 0
EXIT_FATAL_CONFIG = 2
EXIT_PREFLIGHT_FAILED = 3


def cmd_preflight(cfg: RomcompSettings) -> int:
    """Probe the executable of every enabled backend."""
    seen: Dict[str, bool] = {}
    usable = 0
    for kind, backend in enabled_backends(cfg).items():
        if backend is None:
            logger.info(f"{kind.value}: disabled")
            continue
        if backend.executable not in seen:
            st = probe_tool(backend.executable, light=False)
            seen[backend.executable] = st.available
            if st.available:
                logger.info(f"{backend.name}: {st.path}")
                if st.version:
                    logger.info(f"  {st.version}")
            else:
                logger.error(f"{backend.name}: NOT FOUND")
                if st.error:
                    logger.error(st.error)
        ok = seen[backend.executable]
        logger.info(f"{kind.value} -> {backend.name}: {'YES' if ok else 'NO'}")
        if ok:
            usable += 1
    if not usable:
        logger.error("No backend available. Install chdman (mame-tools), maxcso, dolphin-tool or rom64.")
        return EXIT_PREFLIGHT_FAILED
    return EXIT_OK


def cmd_sniff(paths: List[str]) -> int:
    """Print the detected format of each file (directories are walked)."""
    for raw in paths:
        root = Path(raw).expanduser()
        if not root.exists():
            logger.error(f"No such file or directory: {root}")
            continue
        for p in discover(root):
            try:
                res = sniff(p)
            except UnreadableInputError as e:
                print(f"{p}\tUnreadableInput\t{e.message}")
                continue
            detail = ""
            if res.byte_order is not None:
                detail = res.byte_order.value
            elif res.ambiguous:
                detail = "ambiguous: " + ", ".join(res.matched)
            print(f"{p}\t{res.kind.value}\t{detail}".rstrip())
    return EXIT_OK


def _install_stop_handlers(stop_event: threading.Event) -> Callable[[], None]:
    """First SIGINT/SIGTERM stops dispatching; a second one gets default behaviour.

    Returns a callable restoring the previous handlers.
    """
    signums = [signal.SIGINT, signal.SIGTERM]
    previous = {s: signal.getsignal(s) for s in signums}

    def on_signal(signum, _frame):
        stop_event.set()
        logger.warning("Interrupt received: no new units will start; waiting for running backends")
        for s in signums:
            signal.signal(s, signal.SIG_DFL)

    for s in signums:
        signal.signal(s, on_signal)

    def restore() -> None:
        for s, h in previous.items():
            signal.signal(s, h)

    return restore


def cmd_compress(cfg: RomcompSettings, location: str, *, dry_run: bool = False) -> int:
    registry = BackendRegistry.from_settings(cfg)
    stop_event = threading.Event()
    restore = _install_stop_handlers(stop_event)
    try:
        report = run_batch(Path(location), cfg, registry, dry_run=dry_run, stop_event=stop_event)
    except FatalConfigError as e:
        logger.error(str(e))
        return EXIT_FATAL_CONFIG
    finally:
        restore()

    log_summary(report)
    log_event(
        "summary",
        level="DEBUG",
        msg="run summary",
        interrupted=report.interrupted,
        input_bytes=report.input_bytes,
        output_bytes=report.output_bytes,
        **report.counts(),
    )
    if cfg.summary_json:
        written = write_summary(report, Path(cfg.summary_json))
        logger.info(f"Summary written to: {written}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="romcomp", description="Compress ROM and disc images with the right tool")
    p.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ~/.config/romcomp/config.toml)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write current effective settings to the config file and exit",
    )
    p.add_argument("--log-level", default=None, help="Console log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--log-json", dest="log_json", default=None, help="Path to write JSON lines log (structured events)")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("preflight", help="Check which backend tools are installed")

    p_sniff = sub.add_parser("sniff", help="Show the detected format of files")
    p_sniff.add_argument("paths", nargs="+", help="Files or directories to inspect")

    p_comp = sub.add_parser("compress", help="Compress every supported image under a directory (or one file)")
    p_comp.add_argument("location", help="Directory tree or single file")
    p_comp.add_argument("--workers", type=int, default=None, help="Units converted in parallel (default: CPU cores)")
    keep = p_comp.add_mutually_exclusive_group()
    keep.add_argument(
        "--keep-original",
        dest="keep_original",
        action="store_const",
        const=True,
        default=None,
        help="Keep source files after conversion (default)",
    )
    keep.add_argument(
        "--remove",
        dest="keep_original",
        action="store_const",
        const=False,
        help="Delete source files once the output is committed",
    )
    p_comp.add_argument(
        "--flatten",
        dest="flatten",
        action="store_const",
        const=True,
        default=None,
        help="Move outputs up while they are alone in their directory (requires --remove)",
    )
    p_comp.add_argument("--dry-run", action="store_true", help="Plan only; do not run any backend")
    p_comp.add_argument("--timeout", dest="timeout_s", type=float, default=None, help="Per-unit time limit in seconds")
    p_comp.add_argument(
        "--iso-target",
        dest="iso_target",
        choices=["cso", "chd"],
        default=None,
        help="Output format for ISO 9660 images",
    )
    for flag, dest, what in (
        ("--no-cue-bin", "enable_cue_bin", "cue/bin images"),
        ("--no-iso", "enable_raw_iso", "ISO 9660 images"),
        ("--no-wii", "enable_wii_iso", "Wii/GameCube images"),
        ("--no-n64", "enable_n64_rom", "N64 ROMs"),
    ):
        p_comp.add_argument(flag, dest=dest, action="store_const", const=False, default=None, help=f"Skip {what}")
    p_comp.add_argument("--summary-json", dest="summary_json", default=None, help="Write a JSON run summary here")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    config_path = Path(args.config_path).expanduser() if args.config_path else None
    try:
        cfg = RomcompSettings.load(config_path=config_path, overrides=cli_overrides_from_args(args))
    except ValidationError as e:
        print(f"Invalid settings:\n{e}", file=sys.stderr)
        return EXIT_FATAL_CONFIG

    if args.write_config:
        written = cfg.write(config_path)
        print(f"Config written to: {written}")
        return EXIT_OK

    configure(cfg.log_level, cfg.log_json)
    bind_run()
    if args.cmd == "preflight":
        return cmd_preflight(cfg)
    if args.cmd == "sniff":
        return cmd_sniff(args.paths)
    if args.cmd == "compress":
        return cmd_compress(cfg, args.location, dry_run=args.dry_run)
    p.print_help()
    return EXIT_FATAL_CONFIG


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
