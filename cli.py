#!/usr/bin/env python3
"""
PEMU Simple Debugger
=====================
Interactive command monitor for the PEMU emulator.

Provides:
  - Continue / single-step execution
  - Register and physical memory inspection
  - Batch mode (run to completion without a prompt)

Usage:
  python cli.py [-b] [-l LOGFILE] [-v] [--pmem MiB] [--display] [--scale N]
                [IMAGE]
"""

from __future__ import annotations
import argparse
import cmd
import enum
import logging
import re
import readline
import sys
from typing import NamedTuple, Optional

from expr import init_regex
from machine import Machine, MachineError, MASK32, PMEM_SIZE
from watchpoint import init_wp_pool

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Tokenizing
# ---------------------------------------------------------------------------

class Status(enum.IntEnum):
    """What a command handler tells the main loop."""
    CONTINUE = 0
    TERMINATE = -1


_COMMAND_RE = re.compile(r"\s*(\S+)(?:\s(.*))?\Z", re.DOTALL)
_DEC_RE = re.compile(r"\s*([+-]?[0-9]+)")
_HEX_RE = re.compile(r"\s*([+-]?(?:0[xX](?=[0-9a-fA-F]))?[0-9a-fA-F]+)")


def split_command(line: str) -> tuple[Optional[str], Optional[str]]:
    """Split a line into (command word, argument remainder).

    The remainder is everything after the first whitespace character that
    follows the command word, or None if nothing is left.  A blank line
    gives (None, None).
    """
    m = _COMMAND_RE.match(line)
    if m is None:
        return None, None
    return m.group(1), m.group(2) or None


def scan_int(token: str, base: int = 10, default: int = 0) -> int:
    """Read the leading integer of *token*, scanf-style.

    Trailing junk is ignored ("12ab" -> 12); if no digits lead the token
    the default comes back unchanged.  Base 16 takes an optional 0x.
    """
    m = (_HEX_RE if base == 16 else _DEC_RE).match(token)
    if m is None:
        return default
    return int(m.group(1), base)


def _tokens(args: Optional[str]) -> list[str]:
    return args.split() if args else []


class Command(NamedTuple):
    name: str
    description: str
    handler: str    # name of the SimpleDebugger method


# ---------------------------------------------------------------------------
#  Monitor
# ---------------------------------------------------------------------------

class SimpleDebugger(cmd.Cmd):
    """Interactive monitor for a PEMU machine."""

    intro = (
        "\n"
        "╔══════════════════════════════════════════════╗\n"
        "║          PEMU Simple Debugger                ║\n"
        "║   Type 'help' for commands.  'q' to exit.    ║\n"
        "╚══════════════════════════════════════════════╝\n"
    )
    prompt = "(pemu) "

    def __init__(self, machine: Machine, batch_mode: bool = False,
                 display=None, stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        self.machine = machine
        self.batch_mode = batch_mode
        self.display = display
        # An explicit stdin means scripted input, not a terminal.
        if stdin is not None:
            self.use_rawinput = False

    # -- Input --

    def read_line(self) -> Optional[str]:
        """One line of operator input, or None at end of input."""
        if self.use_rawinput:
            try:
                return input(self.prompt)
            except EOFError:
                return None
        self.stdout.write(self.prompt)
        self.stdout.flush()
        line = self.stdin.readline()
        if not line:
            return None
        return line.rstrip("\r\n")

    def parseline(self, line):
        command, args = split_command(line)
        return command, args, line

    # -- Main loop --

    def cmdloop(self, intro=None):
        """Read, tokenize and dispatch until 'q' or end of input.

        In batch mode no prompt is shown: the program runs to completion
        once and the session ends.
        """
        if self.batch_mode:
            self.do_c(None)
            return

        self.preloop()
        if self.use_rawinput and self.completekey:
            self.old_completer = readline.get_completer()
            readline.set_completer(self.complete)
            readline.parse_and_bind(self.completekey + ": complete")
        try:
            if intro is not None:
                self.intro = intro
            if self.intro:
                print(self.intro, file=self.stdout)
            stop = False
            while not stop:
                line = self.read_line()
                if line is None:
                    if self.use_rawinput:
                        print(file=self.stdout)
                    self.do_q(None)
                    break
                stop = self.onecmd(line)
        finally:
            if self.use_rawinput and self.completekey:
                readline.set_completer(self.old_completer)
            self.postloop()

    def onecmd(self, line: str) -> bool:
        """Run one input line.  Returns True when the session should end."""
        command, args = split_command(line)
        if command is None:
            return False
        return self.dispatch(command, args) is Status.TERMINATE

    def dispatch(self, command: str, args: Optional[str]) -> Status:
        if self.display is not None:
            self.display.clear_event_queue()
        for entry in self.commands:
            if entry.name == command:
                return getattr(self, entry.handler)(args)
        print(f"Unknown command '{command}'", file=self.stdout)
        return Status.CONTINUE

    # -- Completion --

    def completenames(self, text, *ignored):
        return [c.name for c in self.commands if c.name.startswith(text)]

    def complete_help(self, text, *args):
        return self.completenames(text)

    # ================================================================
    #  Commands
    # ================================================================

    def do_help(self, args):
        tokens = _tokens(args)
        if not tokens:
            for c in self.commands:
                print(f"{c.name} - {c.description}", file=self.stdout)
            return Status.CONTINUE
        for c in self.commands:
            if c.name == tokens[0]:
                print(f"{c.name} - {c.description}", file=self.stdout)
                return Status.CONTINUE
        print(f"Unknown command '{tokens[0]}'", file=self.stdout)
        return Status.CONTINUE

    def do_c(self, args):
        self.machine.execute(-1)
        return Status.CONTINUE

    def do_q(self, args):
        self.machine.quit()
        return Status.TERMINATE

    def do_si(self, args):
        tokens = _tokens(args)
        n = scan_int(tokens[0], 10, default=1) if tokens else 1
        self.machine.execute(n)
        return Status.CONTINUE

    def do_info(self, args):
        tokens = _tokens(args)
        if tokens and tokens[0] == "r":
            print(self.machine.dump_regs(), file=self.stdout)
        else:
            print("please input r/w", file=self.stdout)
        return Status.CONTINUE

    def do_x(self, args):
        tokens = _tokens(args)
        if not tokens:
            print("please input n", file=self.stdout)
            return Status.CONTINUE
        n = scan_int(tokens[0], 10, default=1)
        if len(tokens) < 2:
            print("please input EXPR", file=self.stdout)
            return Status.CONTINUE
        # TODO: evaluate EXPR with expr.make_token once an evaluator exists;
        # only a literal hex address is accepted for now.
        addr = scan_int(tokens[1], 16, default=0) & MASK32

        for _ in range(n):
            word = self.machine.read_physical(addr, 4)
            hex_str = "".join(f"{b:02x} " for b in word)
            ascii_str = "".join(chr(b) if 32 <= b <= 126 else "." for b in word)
            print(f"{addr:#010x}: {hex_str}{ascii_str}", file=self.stdout)
            addr = (addr + 4) & MASK32
        return Status.CONTINUE

    commands = (
        Command("help", "Display information about all supported commands", "do_help"),
        Command("c", "Continue the execution of the program", "do_c"),
        Command("q", "Exit PEMU", "do_q"),
        Command("si", "[N] Step N instructions, default N = 1", "do_si"),
        Command("info", "r Print registers", "do_info"),
        Command("x", "N EXPR Scan memory: print N consecutive 4-byte words "
                "in hex, starting at address EXPR", "do_x"),
    )


def init_sdb():
    """One-time set-up; must run before the first command is dispatched."""
    init_regex()
    init_wp_pool()
    log.debug("simple debugger initialized")


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def _positive_int(s: str) -> int:
    try:
        v = int(s, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {s!r}")
    if v <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {s!r}")
    return v


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="PEMU Simple Debugger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py                     # built-in image\n"
               "  python cli.py prog.bin\n"
               "  python cli.py -b -l pemu.log prog.bin\n"
               "  python cli.py --display prog.bin\n"
    )
    parser.add_argument("image", nargs="?", default=None,
                        help="Raw binary loaded at the reset vector "
                             "(default: built-in image)")
    parser.add_argument("-b", "--batch", action="store_true",
                        help="Run to completion without the debugger prompt")
    parser.add_argument("-l", "--log", type=str, default=None, metavar="FILE",
                        help="Also write log output to FILE")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug-level logging")
    parser.add_argument("--pmem", type=_positive_int, default=PMEM_SIZE >> 20,
                        metavar="MiB",
                        help=f"Physical memory size in MiB "
                             f"(default: {PMEM_SIZE >> 20})")
    parser.add_argument("--display", action="store_true",
                        help="Open a pygame window showing the VGA framebuffer")
    parser.add_argument("--scale", type=int, default=2, metavar="N",
                        help="Pixel scale factor for display window (default: 2)")
    args = parser.parse_args(argv)

    log_format = "[%(name)s] %(message)s"
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=log_format,
    )
    file_handler = None
    if args.log:
        file_handler = logging.FileHandler(args.log)
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    try:
        return _run(args)
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


def _run(args) -> int:
    machine = Machine(pmem_size=args.pmem << 20)

    display = None
    if args.display:
        try:
            import pygame  # noqa: F401
            from display import FramebufferDisplay
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame", file=sys.stderr)
        else:
            display = FramebufferDisplay(scale=args.scale)
            display.attach(machine)
            display.start()

    try:
        try:
            machine.load_image(args.image)
        except (OSError, MachineError) as e:
            log.error("cannot load image: %s", e)
            return 1

        init_sdb()

        dbg = SimpleDebugger(machine, batch_mode=args.batch, display=display)
        try:
            dbg.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted. Goodbye.")
            machine.quit()
        except MachineError as e:
            log.error("%s", e)
            return 1
    finally:
        if display is not None:
            display.stop()

    return 1 if machine.is_exit_status_bad() else 0


if __name__ == "__main__":
    sys.exit(main())
