"""Position sources: Termux GPS, recording/playback, fixed position."""

import json
import subprocess
import time
from datetime import datetime
from typing import Callable, Optional, Protocol

from .config import CONFIG
from .models import Location

Watcher = Callable[[Location], None]


class PositionSource(Protocol):
    """The calls the app makes on whatever supplies positions"""

    def get_location(self, timeout: int = 30) -> Optional[Location]: ...

    def get_status(self) -> str: ...

    def watch(self, callback: Watcher): ...

    def unwatch(self): ...


class Watchable:
    """watch/unwatch support: the watcher gets every successful fix"""

    _watcher: Optional[Watcher] = None

    def watch(self, callback: Watcher):
        self._watcher = callback

    def unwatch(self):
        self._watcher = None

    def _notify(self, location: Optional[Location]):
        if location is not None and self._watcher is not None:
            self._watcher(location)


class GPS(Watchable):
    """GPS access via Termux API"""

    def __init__(self):
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    def _fail(self, error: str) -> None:
        self.consecutive_failures += 1
        self.last_error = error
        return None

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        """Get current location using termux-location"""
        try:
            result = subprocess.run(
                ["termux-location", "-p", "gps", "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return self._fail("timeout")
        except FileNotFoundError:
            return self._fail("termux-location not installed")

        if result.returncode != 0:
            return self._fail(result.stderr.strip() if result.stderr else "unknown error")
        if not result.stdout or not result.stdout.strip():
            return self._fail("empty response")

        try:
            data = json.loads(result.stdout)
            location = Location(
                lat=data["latitude"],
                lon=data["longitude"],
                accuracy=data.get("accuracy"),
                timestamp=time.time()
            )
        except (json.JSONDecodeError, KeyError) as e:
            return self._fail(f"bad response: {e}")

        self.last_location = location
        self.consecutive_failures = 0
        self.last_error = None
        self._notify(location)
        return location

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_location.accuracy:.0f}m" if self.last_location and self.last_location.accuracy else ""
            return f"GPS OK{acc}"
        return f"GPS: {self.consecutive_failures} consecutive failures ({self.last_error})"


class FixedPosition(Watchable):
    """Always reports the same position (desk testing, --lat/--lon)"""

    def __init__(self, lat: float, lon: float, accuracy: float = 5.0):
        self.location = Location(lat=lat, lon=lon, accuracy=accuracy)

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        location = Location(
            lat=self.location.lat,
            lon=self.location.lon,
            accuracy=self.location.accuracy,
            timestamp=time.time(),
        )
        self._notify(location)
        return location

    def move_to(self, lat: float, lon: float):
        self.location = Location(lat=lat, lon=lon, accuracy=self.location.accuracy)

    def get_status(self) -> str:
        return f"Fixed position {self.location.lat:.6f}, {self.location.lon:.6f}"


class GPSRecorder(Watchable):
    """Records the fixes of another source to a trace file"""

    def __init__(self, source: PositionSource, record_path: str):
        self.source = source
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        """Get location and record it"""
        location = self.source.get_location(timeout)

        # Record even failed attempts
        now = time.time()
        self.trace.append({
            "elapsed": now - self.start_time,
            "timestamp": now,
            "location": location.to_dict() if location else None,
            "status": self.source.get_status()
        })

        self._notify(location)
        return location

    def get_status(self) -> str:
        return self.source.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback(Watchable):
    """Plays back a recorded trace"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.index = 0
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
        self.trace: list[dict] = data["trace"]
        print(f"Loaded GPS trace from {playback_path} ({len(self.trace)} entries)")

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        """Get next location from trace sequentially"""
        if self.index >= len(self.trace):
            return None

        # Speed is handled by the caller via get_poll_interval
        entry = self.trace[self.index]
        self.index += 1

        if not entry.get("location"):
            self.consecutive_failures += 1
            return None

        location = Location.from_dict(entry["location"])
        self.last_location = location
        self.consecutive_failures = 0
        self._notify(location)
        return location

    def get_poll_interval(self) -> float:
        """Interval to wait before the next fix, from trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        interval = (curr_elapsed - prev_elapsed) / self.speed
        return max(0.1, min(interval, 5.0))

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        return f"Playback: {self.consecutive_failures} failures ({progress})"
