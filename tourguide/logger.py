"""Logging module for Tourguide."""

import json
from datetime import datetime
from typing import Optional, Callable


class Logger:
    """Timestamped state log to stdout, a file and an optional callback.

    ``child(component)`` gives each guidance component its own logger that
    writes through the same outputs, tagging lines with the component name,
    so a single log file interleaves tour, correction and navigation entries
    in the order they happened.
    """

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.component: Optional[str] = None
        self.root = self
        self.file = None
        if log_path:
            self.file = open(log_path, "a")
            self._write_header()

    def child(self, component: str) -> "Logger":
        child = Logger(echo=self.echo)
        child.component = component
        child.root = self.root
        return child

    def _write_header(self):
        self.file.write(f"\n{'='*60}\n")
        self.file.write(f"Tourguide Log - {datetime.now().isoformat()}\n")
        self.file.write(f"{'='*60}\n\n")
        self.file.flush()

    def log(self, message: str, data: Optional[dict] = None):
        """Log a message with optional structured data"""
        self.root._write(self.component, message, data)

    def _write(self, component: Optional[str], message: str, data: Optional[dict]):
        timestamp = datetime.now().isoformat()
        tag = f" [{component}]" if component else ""
        line = f"[{timestamp}]{tag} {message}"
        if data:
            line += f" | {json.dumps(data, default=str)}"
        if self.echo:
            print(line)
        if self.file:
            self.file.write(line + "\n")
            self.file.flush()
        if self.callback:
            self.callback(message, data)

    def close(self):
        """Close the log file; children share it, so only the root closes it"""
        if self.root is self and self.file:
            self.file.close()
            self.file = None
