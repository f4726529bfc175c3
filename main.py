#!/usr/bin/env python3
"""
Development launcher for KeyOverlay.

- Forces DEV=1 (debug logging) and reloads config on every (re)start
- Runs the control, overlay WebSocket and overlay page servers
- Ctrl-C exits cleanly
- Ctrl-R restarts the servers with a fresh config
"""

import copy
import os
import sys
import termios
import threading
import time
import tty

from keyoverlay import config
from keyoverlay.server import ServerHandle, configure_logging, start_server_in_thread


class KeyWatcher(threading.Thread):
    def __init__(self):
        super().__init__(daemon=True)
        self.fd = sys.stdin.fileno()
        self.old_settings = termios.tcgetattr(self.fd)
        tty.setcbreak(self.fd)
        self.exit_requested = threading.Event()
        self.restart_requested = False

    def run(self):
        while True:
            ch = os.read(self.fd, 1)
            if ch == b"\x03":  # Ctrl-C
                self.exit_requested.set()
            elif ch == b"\x12":  # Ctrl-R
                self.restart_requested = True
                self.exit_requested.set()

    def rearm(self):
        self.restart_requested = False
        self.exit_requested.clear()

    def restore(self):
        termios.tcsetattr(self.fd, termios.TCSADRAIN, self.old_settings)


def _start_dev_servers() -> ServerHandle:
    cfg = copy.deepcopy(config.reload_cfg())
    configure_logging(cfg)
    return start_server_in_thread(cfg)


def main():
    os.environ["DEV"] = "1"
    print("[dev] Running KeyOverlay (Ctrl-C to exit, Ctrl-R to restart)")

    watcher = KeyWatcher()
    watcher.start()
    try:
        while True:
            handle = _start_dev_servers()
            try:
                while not watcher.exit_requested.is_set() and handle.thread.is_alive():
                    time.sleep(0.2)
            except KeyboardInterrupt:
                pass
            finally:
                print("[dev] Stopping KeyOverlay ...")
                handle.stop()

            if watcher.restart_requested:
                print("[dev] Restart requested via Ctrl-R")
                watcher.rearm()
                continue
            print("[dev] Exiting dev mode")
            break
    finally:
        # Always restore terminal mode after the servers are down
        watcher.restore()


if __name__ == "__main__":
    sys.exit(main())
