"""
PEMU Emulator Core
===================
The machine the simple debugger drives: physical memory, the RISC-V
register file, and the run-state machine behind ``execute(n)``.

Instruction semantics are not modelled here.  ``Machine.exec_once`` fetches
one word and recognises only the ``ebreak`` trap that ends a program; every
other word is stepped over.  Subclasses plug a real ISA in by overriding
``exec_once``.

Memory map:
  0x8000_0000 .. PMEM_BASE + PMEM_SIZE   main memory (pmem)
  0xa100_0000 ..                         VGA framebuffer (display.py)
"""

from __future__ import annotations

import enum
import itertools
import logging
import struct
import sys
import time
from typing import Optional

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

PMEM_BASE = 0x8000_0000
PMEM_SIZE = 0x0800_0000           # 128 MiB
RESET_VECTOR = PMEM_BASE

MASK32 = 0xFFFF_FFFF

TRAP_INSTRUCTION = 0x0010_0073    # ebreak, used as the "program done" trap

# Echo every executed instruction when fewer than this many are requested.
MAX_INST_TO_PRINT = 10

REG_NAMES = (
    "$0", "ra", "sp", "gp", "tp", "t0", "t1", "t2",
    "s0", "s1", "a0", "a1", "a2", "a3", "a4", "a5",
    "a6", "a7", "s2", "s3", "s4", "s5", "s6", "s7",
    "s8", "s9", "s10", "s11", "t3", "t4", "t5", "t6",
)
REG_A0 = REG_NAMES.index("a0")

# Loaded at RESET_VECTOR when no image is given.
BUILTIN_IMAGE = struct.pack(
    "<5I",
    0x0000_0297,   # auipc t0,0
    0x0002_8823,   # sb    zero,16(t0)
    0x0102_c503,   # lbu   a0,16(t0)
    TRAP_INSTRUCTION,
    0xdead_beef,   # data
)

# ANSI colors
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"


# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class MachineError(Exception):
    """Base for faults raised by the emulator core."""
    pass


class MemoryAccessError(MachineError):
    def __init__(self, addr: int, length: int, pc: int,
                 lo: int = PMEM_BASE, hi: int = PMEM_BASE + PMEM_SIZE - 1):
        self.addr = addr
        self.length = length
        self.pc = pc
        super().__init__(
            f"address = {addr:#010x} is out of bound of pmem "
            f"[{lo:#010x}, {hi:#010x}] at pc = {pc:#010x}")


class State(enum.Enum):
    RUNNING = "running"
    STOP = "stop"
    END = "end"
    ABORT = "abort"
    QUIT = "quit"


# ---------------------------------------------------------------------------
#  Physical memory
# ---------------------------------------------------------------------------

class PhysicalMemory:
    """Main memory plus any number of named regions (device apertures).

    Every access must fall entirely inside one region.
    """

    def __init__(self, size: int = PMEM_SIZE, base: int = PMEM_BASE):
        self.base = base
        self.size = size
        self.pmem = bytearray(size)
        self.regions: list[tuple[str, int, bytearray]] = [
            ("pmem", base, self.pmem),
        ]
        # The core updates this so faults report where they happened.
        self.pc = 0

    def map_region(self, name: str, base: int, buf: bytearray):
        """Map *buf* into the physical address space at *base*."""
        end = base + len(buf)
        for other, obase, obuf in self.regions:
            if base < obase + len(obuf) and obase < end:
                raise MachineError(
                    f"region '{name}' [{base:#010x}, {end - 1:#010x}] "
                    f"overlaps '{other}'")
        self.regions.append((name, base, buf))
        log.debug("mapped %s at [%#010x, %#010x]", name, base, end - 1)

    def _locate(self, addr: int, length: int) -> tuple[bytearray, int]:
        for _, base, buf in self.regions:
            if base <= addr and addr + length <= base + len(buf):
                return buf, addr - base
        raise MemoryAccessError(addr, length, self.pc,
                                self.base, self.base + self.size - 1)

    def read(self, addr: int, length: int) -> bytes:
        buf, off = self._locate(addr, length)
        return bytes(buf[off:off + length])

    def write(self, addr: int, data: bytes | bytearray):
        buf, off = self._locate(addr, len(data))
        buf[off:off + len(data)] = data

    def read_u32(self, addr: int) -> int:
        return int.from_bytes(self.read(addr, 4), "little")

    def write_u32(self, addr: int, val: int):
        self.write(addr, (val & MASK32).to_bytes(4, "little"))


# ---------------------------------------------------------------------------
#  Machine
# ---------------------------------------------------------------------------

class Machine:
    """Single-hart RV32 machine with a pluggable instruction step."""

    def __init__(self, pmem_size: int = PMEM_SIZE, out=None):
        self.memory = PhysicalMemory(pmem_size)
        self.gpr = [0] * 32
        self.pc = RESET_VECTOR
        self.state = State.STOP
        self.halt_pc = 0
        self.halt_ret = 0
        self.instr_count = 0
        self.host_time_ns = 0
        self.devices: list = []
        self._out = out

    @property
    def out(self):
        return self._out if self._out is not None else sys.stdout

    # -- Loading --

    def load_image(self, path: Optional[str] = None) -> int:
        """Load a raw binary at RESET_VECTOR.  Returns its size in bytes."""
        if path is None:
            print("No image is given. Use the default build-in image.",
                  file=self.out)
            data = BUILTIN_IMAGE
        else:
            with open(path, "rb") as f:
                data = f.read()
            log.info("The image is %s, size = %d", path, len(data))
        if len(data) > self.memory.size:
            raise MachineError(
                f"image of {len(data)} bytes does not fit in "
                f"{self.memory.size} bytes of pmem")
        self.memory.write(RESET_VECTOR, data)
        return len(data)

    # -- Inspection --

    def read_physical(self, addr: int, length: int) -> bytes:
        return self.memory.read(addr, length)

    def reg_value(self, name: str) -> int:
        """Value of a register by ABI name ('a0', '$a0', 'pc')."""
        key = name.strip()
        if key == "pc" or key == "$pc":
            return self.pc
        if key in REG_NAMES:
            return self.gpr[REG_NAMES.index(key)]
        if key.startswith("$") and key[1:] in REG_NAMES:
            return self.gpr[REG_NAMES.index(key[1:])]
        raise KeyError(name)

    def dump_regs(self) -> str:
        lines = [f"  {name:<4s}{val:#010x}  {val}"
                 for name, val in zip(REG_NAMES, self.gpr)]
        lines.append(f"  {'pc':<4s}{self.pc:#010x}")
        return "\n".join(lines)

    # -- Execution --

    def exec_once(self):
        """Execute one instruction at pc."""
        inst = self.memory.read_u32(self.pc)
        if inst == TRAP_INSTRUCTION:
            self.halt(self.pc, self.gpr[REG_A0])
            return
        self.pc = (self.pc + 4) & MASK32

    def halt(self, pc: int, ret: int):
        self.state = State.END
        self.halt_pc = pc
        self.halt_ret = ret

    def quit(self):
        """Operator quit.  A finished or aborted run keeps its verdict."""
        if self.state not in (State.END, State.ABORT):
            self.state = State.QUIT

    def execute(self, n: int):
        """Run *n* instructions, or until the machine stops if n < 0."""
        if self.state in (State.END, State.ABORT, State.QUIT):
            print("Program execution has ended. To restart the program, "
                  "exit PEMU and run again.", file=self.out)
            return
        self.state = State.RUNNING

        print_step = 0 <= n < MAX_INST_TO_PRINT
        steps = itertools.count() if n < 0 else range(n)
        start = time.perf_counter_ns()
        for _ in steps:
            pc = self.pc
            self.memory.pc = pc
            try:
                if print_step:
                    raw = self.memory.read(pc, 4)
                    print(f"{pc:#010x}: " + " ".join(f"{b:02x}" for b in raw),
                          file=self.out)
                self.exec_once()
            except MachineError as e:
                log.error("%s", e)
                self.state = State.ABORT
                self.halt_pc = pc
                self.halt_ret = -1
                break
            self.instr_count += 1
            for dev in self.devices:
                dev.update(self)
            if self.state is not State.RUNNING:
                break
        self.host_time_ns += time.perf_counter_ns() - start

        if self.state is State.RUNNING:
            self.state = State.STOP
        elif self.state in (State.END, State.ABORT):
            if self.state is State.ABORT:
                verdict = f"{RED}ABORT{RESET}"
            elif self.halt_ret == 0:
                verdict = f"{GREEN}HIT GOOD TRAP{RESET}"
            else:
                verdict = f"{RED}HIT BAD TRAP{RESET}"
            print(f"pemu: {verdict} at pc = {self.halt_pc:#010x}",
                  file=self.out)
            self.statistic()
        elif self.state is State.QUIT:
            self.statistic()

    def statistic(self):
        us = self.host_time_ns // 1000
        log.info("host time spent = %d us", us)
        log.info("total guest instructions = %d", self.instr_count)
        if us > 0:
            log.info("simulation frequency = %d inst/s",
                     self.instr_count * 1_000_000 // us)
        else:
            log.info("Finish running in less than 1 us and can not "
                     "calculate the simulation frequency")

    def is_exit_status_bad(self) -> bool:
        good = (self.state is State.END and self.halt_ret == 0) or \
            self.state is State.QUIT
        return not good
