"""
Emulator core tests: physical memory, image loading, the run-state
machine behind execute(n), and register display.
"""

import io
import os
import tempfile
import unittest

from machine import (
    BUILTIN_IMAGE, PMEM_BASE, REG_A0, REG_NAMES, TRAP_INSTRUCTION,
    Machine, MachineError, MemoryAccessError, PhysicalMemory, State,
)


def make_machine(pmem_size: int = 0x1000) -> Machine:
    return Machine(pmem_size=pmem_size, out=io.StringIO())


class TestPhysicalMemory(unittest.TestCase):
    def test_little_endian_word(self):
        mem = PhysicalMemory(0x100)
        mem.write_u32(PMEM_BASE, 0x20FF0041)
        self.assertEqual(mem.read(PMEM_BASE, 4), b"\x41\x00\xff\x20")
        self.assertEqual(mem.read_u32(PMEM_BASE), 0x20FF0041)

    def test_out_of_bound(self):
        mem = PhysicalMemory(0x100)
        mem.pc = PMEM_BASE + 8
        with self.assertRaises(MemoryAccessError) as ctx:
            mem.read(0x1000, 4)
        msg = str(ctx.exception)
        self.assertIn("address = 0x00001000 is out of bound of pmem", msg)
        self.assertIn("[0x80000000, 0x800000ff]", msg)
        self.assertIn("at pc = 0x80000008", msg)

    def test_straddling_end_is_rejected(self):
        mem = PhysicalMemory(0x100)
        with self.assertRaises(MemoryAccessError):
            mem.read(PMEM_BASE + 0xFE, 4)

    def test_map_region(self):
        mem = PhysicalMemory(0x100)
        buf = bytearray(16)
        mem.map_region("dev", 0x1000, buf)
        mem.write(0x1004, b"\xaa\xbb")
        self.assertEqual(buf[4:6], b"\xaa\xbb")
        self.assertEqual(mem.read(0x1004, 2), b"\xaa\xbb")

    def test_overlapping_region(self):
        mem = PhysicalMemory(0x100)
        with self.assertRaises(MachineError):
            mem.map_region("bad", PMEM_BASE + 0x80, bytearray(0x100))


class TestLoadImage(unittest.TestCase):
    def test_builtin(self):
        m = make_machine()
        size = m.load_image()
        self.assertEqual(size, len(BUILTIN_IMAGE))
        self.assertEqual(m.read_physical(PMEM_BASE, size), BUILTIN_IMAGE)
        self.assertIn("default build-in image", m.out.getvalue())

    def test_from_file(self):
        data = bytes(range(16))
        with tempfile.NamedTemporaryFile(suffix=".bin", delete=False) as f:
            f.write(data)
            path = f.name
        try:
            m = make_machine()
            self.assertEqual(m.load_image(path), 16)
        finally:
            os.unlink(path)
        self.assertEqual(m.read_physical(PMEM_BASE, 16), data)

    def test_too_large(self):
        with tempfile.NamedTemporaryFile(suffix=".bin", delete=False) as f:
            f.write(bytes(0x200))
            path = f.name
        try:
            with self.assertRaises(MachineError):
                make_machine(0x100).load_image(path)
        finally:
            os.unlink(path)


class TestExecute(unittest.TestCase):
    def setUp(self):
        self.m = make_machine()
        self.m.load_image()

    def test_run_to_good_trap(self):
        self.m.execute(-1)
        self.assertIs(self.m.state, State.END)
        self.assertEqual(self.m.halt_pc, PMEM_BASE + 12)
        self.assertEqual(self.m.halt_ret, 0)
        self.assertEqual(self.m.instr_count, 4)
        out = self.m.out.getvalue()
        self.assertIn("HIT GOOD TRAP", out)
        self.assertIn("at pc = 0x8000000c", out)
        self.assertFalse(self.m.is_exit_status_bad())

    def test_bad_trap(self):
        self.m.gpr[REG_A0] = 1
        self.m.execute(-1)
        self.assertIn("HIT BAD TRAP", self.m.out.getvalue())
        self.assertTrue(self.m.is_exit_status_bad())

    def test_partial_steps_stop(self):
        self.m.execute(2)
        self.assertIs(self.m.state, State.STOP)
        self.assertEqual(self.m.pc, PMEM_BASE + 8)
        self.assertEqual(self.m.out.getvalue().splitlines()[-2:],
                         ["0x80000000: 97 02 00 00",
                          "0x80000004: 23 88 02 00"])
        self.assertTrue(self.m.is_exit_status_bad())

    def test_no_trace_for_large_counts(self):
        self.m.execute(10)
        self.assertNotIn("0x80000000:", self.m.out.getvalue())
        self.assertIs(self.m.state, State.END)

    def test_zero_steps(self):
        self.m.execute(0)
        self.assertIs(self.m.state, State.STOP)
        self.assertEqual(self.m.pc, PMEM_BASE)

    def test_execute_after_end(self):
        self.m.execute(-1)
        count = self.m.instr_count
        self.m.execute(1)
        self.assertIn("Program execution has ended", self.m.out.getvalue())
        self.assertEqual(self.m.instr_count, count)

    def test_fault_aborts(self):
        self.m.pc = 0x10
        self.m.execute(-1)
        self.assertIs(self.m.state, State.ABORT)
        self.assertEqual(self.m.halt_pc, 0x10)
        out = self.m.out.getvalue()
        self.assertIn("ABORT", out)
        self.assertIn("at pc = 0x00000010", out)
        self.assertTrue(self.m.is_exit_status_bad())

    def test_quit_is_good_exit(self):
        self.m.execute(1)
        self.m.quit()
        self.assertIs(self.m.state, State.QUIT)
        self.assertFalse(self.m.is_exit_status_bad())

    def test_quit_keeps_bad_trap(self):
        self.m.gpr[REG_A0] = 1
        self.m.execute(-1)
        self.m.quit()
        self.assertIs(self.m.state, State.END)
        self.assertTrue(self.m.is_exit_status_bad())

    def test_quit_keeps_abort(self):
        self.m.pc = 0x10
        self.m.execute(-1)
        self.m.quit()
        self.assertIs(self.m.state, State.ABORT)
        self.assertTrue(self.m.is_exit_status_bad())

    def test_devices_updated_each_instruction(self):
        seen = []

        class Dev:
            def update(self, machine):
                seen.append(machine.pc)

        self.m.devices.append(Dev())
        self.m.execute(3)
        self.assertEqual(seen, [PMEM_BASE + 4, PMEM_BASE + 8, PMEM_BASE + 12])

    def test_exec_once_override(self):
        class Counter(Machine):
            def exec_once(self):
                self.gpr[REG_A0] += 1
                super().exec_once()

        m = Counter(pmem_size=0x100, out=io.StringIO())
        m.memory.write_u32(PMEM_BASE + 8, TRAP_INSTRUCTION)
        m.execute(-1)
        self.assertIs(m.state, State.END)
        self.assertEqual(m.halt_ret, 3)


class TestRegisters(unittest.TestCase):
    def test_dump(self):
        m = make_machine()
        m.gpr[REG_NAMES.index("sp")] = 0x1234
        lines = m.dump_regs().splitlines()
        self.assertEqual(len(lines), 33)
        self.assertEqual(lines[2], "  sp  0x00001234  4660")
        self.assertEqual(lines[-1], "  pc  0x80000000")

    def test_reg_value(self):
        m = make_machine()
        m.gpr[REG_A0] = 7
        self.assertEqual(m.reg_value("a0"), 7)
        self.assertEqual(m.reg_value("$a0"), 7)
        self.assertEqual(m.reg_value("$0"), 0)
        self.assertEqual(m.reg_value("pc"), PMEM_BASE)
        with self.assertRaises(KeyError):
            m.reg_value("x99")


if __name__ == "__main__":
    unittest.main()
