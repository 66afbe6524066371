"""
PEMU VGA Display
=================
A 400x300 32-bit framebuffer mapped into physical memory at FB_ADDR,
shown in a pygame window.  The window runs in a background thread so it
doesn't block the debugger prompt.

Key presses in the window are queued for the guest.  Whatever piles up
while the operator sits at the debugger prompt is stale by the time the
program resumes, so the debugger drops it with ``clear_event_queue()``
before each command.

Usage (programmatic):
    from display import FramebufferDisplay
    disp = FramebufferDisplay(scale=2)
    disp.attach(machine)   # maps the framebuffer, registers for updates
    disp.start()           # launches background thread
    ...
    disp.stop()

Usage (CLI):
    python cli.py --display image.bin
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING

from machine import State

if TYPE_CHECKING:
    from machine import Machine

log = logging.getLogger(__name__)

FB_ADDR = 0xa100_0000
SCREEN_W = 400
SCREEN_H = 300
BYTES_PER_PIXEL = 4
FB_SIZE = SCREEN_W * SCREEN_H * BYTES_PER_PIXEL

KEY_QUEUE_LEN = 1024


class _VGABase:
    """Framebuffer memory and the key-event queue shared by both displays."""

    def __init__(self):
        self.framebuffer = bytearray(FB_SIZE)
        self.key_queue: deque[tuple[int, bool]] = deque(maxlen=KEY_QUEUE_LEN)
        self._lock = threading.Lock()
        self._quit_requested = threading.Event()

    def attach(self, machine: "Machine"):
        """Map the framebuffer into *machine* and hook device updates."""
        machine.memory.map_region("vga", FB_ADDR, self.framebuffer)
        machine.devices.append(self)

    # -- event queue --

    def push_key(self, keycode: int, down: bool = True):
        with self._lock:
            self.key_queue.append((keycode, down))

    def pop_key(self):
        """Oldest pending (keycode, down) pair, or None."""
        with self._lock:
            return self.key_queue.popleft() if self.key_queue else None

    def clear_event_queue(self) -> int:
        """Drop pending key events.  Returns how many were dropped."""
        with self._lock:
            n = len(self.key_queue)
            self.key_queue.clear()
        if n:
            log.debug("dropped %d pending key events", n)
        return n

    # -- device hook --

    def update(self, machine: "Machine"):
        """Called by the machine after each instruction."""
        if self._quit_requested.is_set() and machine.state is State.RUNNING:
            machine.quit()

    def request_quit(self):
        self._quit_requested.set()


class FramebufferDisplay(_VGABase):
    """Background-threaded pygame window showing the VGA framebuffer."""

    def __init__(self, scale: int = 2, title: str = "PEMU"):
        super().__init__()
        self.scale = max(1, scale)
        self.title = title
        self.fps = 30
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._started = threading.Event()

    # -- public API -------------------------------------------------------

    def start(self):
        """Start the display thread.  Returns once the window is open."""
        self._stop_event.clear()
        self._started.clear()
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name="pemu-display")
        self._thread.start()
        self._started.wait(timeout=5.0)

    def stop(self):
        """Signal the display thread to shut down and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3.0)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- internals --------------------------------------------------------

    def _run(self):
        """Main display loop (runs in background thread)."""
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode(
            (SCREEN_W * self.scale, SCREEN_H * self.scale))
        fb_surface = pygame.Surface((SCREEN_W, SCREEN_H))
        clock = pygame.time.Clock()

        self._started.set()

        try:
            while not self._stop_event.is_set():
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self.request_quit()
                        self._stop_event.set()
                        return
                    elif event.type == pygame.KEYDOWN:
                        self.push_key(event.key, True)
                    elif event.type == pygame.KEYUP:
                        self.push_key(event.key, False)

                self._render_fb(fb_surface)
                if self.scale == 1:
                    screen.blit(fb_surface, (0, 0))
                else:
                    scaled = pygame.transform.scale(
                        fb_surface, (SCREEN_W * self.scale, SCREEN_H * self.scale))
                    screen.blit(scaled, (0, 0))
                pygame.display.flip()
                clock.tick(self.fps)

        except Exception as e:
            log.error("display error: %s", e)
        finally:
            pygame.quit()

    def _render_fb(self, surface):
        """Paint the 0x00RRGGBB framebuffer onto a pygame Surface."""
        import pygame
        import numpy as np

        raw = np.frombuffer(self.framebuffer, dtype=np.uint8).reshape(
            SCREEN_H, SCREEN_W, BYTES_PER_PIXEL)
        # Little-endian 0x00RRGGBB is stored B, G, R, 0.
        rgb = raw[:, :, 2::-1].transpose(1, 0, 2)
        pygame.surfarray.blit_array(surface, np.ascontiguousarray(rgb))


class HeadlessDisplay(_VGABase):
    """No-window display for testing and scripting."""

    def __init__(self):
        super().__init__()
        self.snapshots: list[bytes] = []

    def start(self):
        pass

    def stop(self):
        pass

    def inject_key(self, keycode: int, down: bool = True):
        self.push_key(keycode, down)

    def snapshot(self) -> bytes:
        """Capture current framebuffer contents."""
        data = bytes(self.framebuffer)
        self.snapshots.append(data)
        return data

    @property
    def running(self) -> bool:
        return False
