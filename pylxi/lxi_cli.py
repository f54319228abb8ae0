#!/usr/bin/env python3
"""
lxi - command-line client for LXI instruments.

This script:
  - Discovers LXI instruments on the local networks (VXI-11 broadcast)
  - Sends SCPI commands over a raw TCP socket (port 5025)
  - Prints text responses, or dumps TMC block payloads as hex / to a file
  - Fetches oscilloscope screenshots ('display:data?')

Protocol notes:
  - Commands are ASCII, terminated by '\n'; only queries ('?') get a reply.
  - Binary replies are TMC blocks: '#', digit N, N length digits, data, '\n'.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Callable, Optional, TextIO

from pylxi import __version__
from pylxi.app_settings import AppSettings
from pylxi.discovery import discover, format_device
from pylxi.errors import LxiError
from pylxi.exchange import Session, route_response, run_scpi_command, run_screenshot_capture
from pylxi.options import DISCOVER, SCPI, SCREENSHOT, Options
from pylxi.transport import VisaTransport

PROMPT = "lxi> "


def init_logger(opt):
    """
    Attach two handlers to the 'pylxi' logger: a console handler (stderr) that
    shows INFO and above (DEBUG with -v), and an optional file handler that
    captures everything with rich formatting.

    Responses themselves go to stdout via print, so they can be piped.
    """
    logger = logging.getLogger("pylxi")
    logger.handlers.clear()
    logger.propagate = False   # don't double-log via root

    # Master level: keep at DEBUG so handlers decide what to show/store
    logger.setLevel(logging.DEBUG)

    # -------- Console handler (to terminal) --------
    if not getattr(opt, "quiet", False):
        ch = logging.StreamHandler(sys.stderr)   # safe when piping stdout
        ch.setLevel(logging.DEBUG if getattr(opt, "verbose", False) else logging.INFO)
        ch.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(ch)

    # -------- File handler (full detail) --------
    if getattr(opt, "logging", False):
        log_path = getattr(opt, "log_file", None) or "lxi.log"
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8", mode="w")
        fh.setLevel(logging.DEBUG)  # capture everything to file
        fh.setFormatter(logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s [%(filename)s:%(lineno)d %(funcName)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(fh)

    return logger


class _ArgumentParser(argparse.ArgumentParser):
    """Argument errors exit with status 1, like every other failure."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


# --- Defaults & settings resolution ------------------------------------------
def apply_settings(args, settings: Optional[AppSettings], use_saved: bool = True) -> None:
    """
    Fill missing CLI args from either saved QSettings (use_saved=True)
    or from AppSettings' compile-time defaults (use_saved=False).
    Persists the resolved values back when --save-settings was given.
    """
    if use_saved and settings is not None:
        defaults = {
            "ip": settings.ip,
            "port": settings.port,
            "timeout": settings.screenshot_timeout if args.command == SCREENSHOT else settings.timeout,
        }
    else:
        defaults = {
            "ip": AppSettings.DEFAULT_IP,
            "port": AppSettings.DEFAULT_PORT,
            "timeout": (AppSettings.DEFAULT_SCREENSHOT_TIMEOUT if args.command == SCREENSHOT
                        else AppSettings.DEFAULT_TIMEOUT),
        }

    # Fill only when user did not pass a value
    for key, val in defaults.items():
        if hasattr(args, key) and getattr(args, key) is None:
            setattr(args, key, val)

    # Persist (only if explicitly requested)
    if getattr(args, "save_settings", False) and settings is not None:
        if getattr(args, "ip", None):
            settings.ip = args.ip
        if getattr(args, "port", None) is not None:
            settings.port = args.port
        if args.command == SCREENSHOT:
            settings.screenshot_timeout = args.timeout
        else:
            settings.timeout = args.timeout
        settings.sync()


def process_arguments(argv=None):
    """Parse CLI flags. With no arguments at all, help is printed and the process exits 0."""
    common = _ArgumentParser(add_help=False)
    common.add_argument('-v', '--verbose', help='increase output verbosity', action='store_true')
    common.add_argument('-l', '--logging', help='enable logging to file', action='store_true')
    common.add_argument('--log-file', help='log file path (used with --logging)', default=None)
    common.add_argument('--quiet', help='suppress console log output', action='store_true')
    common.add_argument('--no-settings', help='ignore saved defaults', action='store_true')
    common.add_argument('--save-settings', help='save provided options as defaults', action='store_true')

    p = _ArgumentParser(prog='lxi', description='LXI instrument client (SCPI over TCP)')
    p.add_argument('-v', '--version', action='version', version=f'lxi v{__version__}')
    sub = p.add_subparsers(dest='command', metavar='<command>')

    d = sub.add_parser(DISCOVER, parents=[common], help='Search for LXI devices')
    d.add_argument('-t', '--timeout', type=float, default=None, help='Timeout in seconds')

    s = sub.add_parser(SCPI, parents=[common], help='Send SCPI command')
    s.add_argument('-i', '--ip', dest='ip', default=None, help='IP address')
    s.add_argument('-p', '--port', type=int, default=None, help='TCP port [default: 5025]')
    s.add_argument('-t', '--timeout', type=float, default=None, help='Timeout in seconds')
    s.add_argument('-x', '--dump-hex', action='store_true', help='Print response in hexadecimal')
    s.add_argument('-f', '--dump-file', metavar='FILENAME', default=None, help='Save response to file')
    mode = s.add_mutually_exclusive_group()
    mode.add_argument('-a', '--interactive', action='store_true', help='Enter interactive mode')
    mode.add_argument('-r', '--run-script', metavar='FILENAME', default=None, help='Run script')
    s.add_argument('scpi_command', nargs='?', default=None, help='SCPI command [default: *IDN?]')

    g = sub.add_parser(SCREENSHOT, parents=[common], help='Capture oscilloscope screenshot')
    g.add_argument('-i', '--ip', dest='ip', default=None, help='IP address')
    g.add_argument('-p', '--port', type=int, default=None, help='TCP port [default: 5025]')
    g.add_argument('-t', '--timeout', type=float, default=None, help='Timeout in seconds')
    g.add_argument('--convert', action='store_true',
                   help='re-encode the bitmap to the format the filename implies (e.g. .png)')
    g.add_argument('filename', help='output file')

    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        p.print_help()
        p.exit(0)

    args = p.parse_args(argv)
    if args.command is None:
        p.error('no command given')
    return args


# -----------------
# Command runners
# -----------------
def _run_one(session: Session, command: str, opt: Options, out: TextIO, LOG) -> bool:
    """Run one command of an interactive/script session; failures are reported, not raised."""
    try:
        response = session.exchange(command)
        route_response(response, dump_hex=opt.dump_hex, filename=opt.filename, out=out)
    except LxiError as e:
        LOG.error("Error: %s", e)
        return False
    return True


def run_interactive(session: Session, opt: Options, LOG, *,
                    input_fn: Callable[[str], str] = input, out: Optional[TextIO] = None) -> int:
    out = out or sys.stdout
    LOG.info("Connected to %s", opt.ip)
    LOG.info("Entering interactive mode (type 'exit' or Ctrl-D to quit)")
    while True:
        try:
            line = input_fn(PROMPT)
        except (EOFError, KeyboardInterrupt):
            break
        command = line.strip()
        if not command:
            continue
        if command.lower() in ("exit", "quit"):
            break
        _run_one(session, command, opt, out, LOG)
    return 0


def run_script(session: Session, opt: Options, LOG, *, out: Optional[TextIO] = None) -> int:
    """Run every command line of the script; returns 1 if any of them failed."""
    out = out or sys.stdout
    try:
        with open(opt.script, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as e:
        LOG.error("Error: cannot read script %s: %s", opt.script, e)
        return 1

    failed = 0
    for lineno, line in enumerate(lines, 1):
        command = line.strip()
        if not command or command.startswith('#'):
            continue
        LOG.debug("%s:%d: %s", opt.script, lineno, command)
        if not _run_one(session, command, opt, out, LOG):
            failed += 1
    if failed:
        LOG.warning("%d command(s) failed", failed)
    return 1 if failed else 0


def run_scpi(opt: Options, LOG, *, transport_factory=VisaTransport, out: Optional[TextIO] = None,
             input_fn: Callable[[str], str] = input) -> int:
    out = out or sys.stdout
    if opt.interactive or opt.run_script:
        # the session owns one connection for its whole lifetime
        with Session(opt.ip, opt.timeout, port=opt.port, transport_factory=transport_factory) as session:
            if opt.interactive:
                return run_interactive(session, opt, LOG, input_fn=input_fn, out=out)
            return run_script(session, opt, LOG, out=out)

    response = run_scpi_command(opt.ip, opt.scpi_command, opt.timeout,
                                port=opt.port, transport_factory=transport_factory)
    route_response(response, dump_hex=opt.dump_hex, filename=opt.filename, out=out)
    return 0


def run_discover(opt: Options, LOG, *, resource_manager=None, out: Optional[TextIO] = None) -> int:
    out = out or sys.stdout
    devices = discover(opt.timeout, resource_manager=resource_manager)
    for device in devices:
        out.write(format_device(device) + '\n')
    if not devices:
        LOG.info("No LXI devices found")
    return 0


def run_screenshot(opt: Options, LOG, *, transport_factory=VisaTransport) -> int:
    result = run_screenshot_capture(opt.ip, opt.filename, opt.timeout, port=opt.port,
                                    transport_factory=transport_factory, convert=opt.convert)
    LOG.info("Saved screenshot to %s", result.filename)
    return 0


# -----------------
# Main
# -----------------
def main(argv=None, *, settings: Optional[AppSettings] = None,
         transport_factory=VisaTransport, resource_manager=None) -> int:
    args = process_arguments(argv)
    LOG = init_logger(args)

    # Load settings unless suppressed
    if settings is None and not args.no_settings:
        settings = AppSettings()
    apply_settings(args, settings, use_saved=not args.no_settings)

    opt = Options.from_args(args)
    LOG.debug("%r", opt)

    if opt.command in (SCPI, SCREENSHOT) and not opt.ip:
        LOG.error("Error: No IP address specified")
        return 1

    try:
        if opt.command == DISCOVER:
            return run_discover(opt, LOG, resource_manager=resource_manager)
        if opt.command == SCREENSHOT:
            return run_screenshot(opt, LOG, transport_factory=transport_factory)
        return run_scpi(opt, LOG, transport_factory=transport_factory)
    except LxiError as e:
        LOG.error("Error: %s", e)
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
