"""Main Tourguide application."""

import asyncio
import json
import time
from typing import Optional

from .audio import Narrator
from .config import CONFIG
from .coordinator import GuidanceCoordinator
from .errors import InvalidConfiguration
from .events import GuidanceEvent
from .geo import format_distance, retry_with_backoff
from .gps import GPS, FixedPosition, GPSPlayback, GPSRecorder, PositionSource
from .logger import Logger
from .models import POI, GuidanceSettings, GuidanceType, Location
from .routing import ORSRouter, RoutingProvider
from .ws_position import WebSocketPositionSource

# Events printed to the console as they happen
ANNOUNCED_EVENTS = {
    GuidanceEvent.TOUR_STARTED,
    GuidanceEvent.NEXT_POI_NAVIGATION,
    GuidanceEvent.POI_APPROACHED,
    GuidanceEvent.POI_REACHED,
    GuidanceEvent.TOUR_COMPLETED,
    GuidanceEvent.BACK_ON_TRACK_STARTED,
    GuidanceEvent.RETURNED_TO_MAIN_ROUTE,
    GuidanceEvent.GUIDANCE_ERROR,
    GuidanceEvent.ROUTING_ERROR,
}


def load_tour(path: str) -> list[POI]:
    """Read POIs from a tour file: {"name": ..., "pois": [...]} or a bare list"""
    with open(path) as f:
        data = json.load(f)
    entries = data.get("pois") if isinstance(data, dict) else data
    if not entries:
        raise InvalidConfiguration(f"No POIs in tour file {path}")
    return [POI.from_dict(entry, order=i) for i, entry in enumerate(entries)]


def _loggable(data: dict) -> dict:
    """Event payload without bulky objects (routes, configs)"""
    result = {}
    for key, value in data.items():
        if isinstance(value, (str, int, float, bool, type(None), list, tuple)):
            result[key] = value
        elif isinstance(value, dict):
            result[key] = {k: v for k, v in value.items() if k != "tour_route"}
        elif isinstance(value, Exception):
            result[key] = str(value)
    return result


class TourGuide:
    """Application: wires a position source to the guidance coordinator"""

    def __init__(self, pois: list[POI], log_path: Optional[str] = None,
                 settings: Optional[GuidanceSettings] = None,
                 routing: Optional[RoutingProvider] = None,
                 narrator: Optional[Narrator] = None,
                 start_location: Optional[tuple[float, float]] = None,
                 preview_mode: bool = False,
                 ws_port: Optional[int] = None,
                 echo: bool = True):
        self.pois = pois
        self.settings = settings or GuidanceSettings.from_config()
        self.preview_mode = preview_mode
        self.start_location = start_location

        self.ws_source: Optional[WebSocketPositionSource] = None
        if ws_port:
            self.ws_source = WebSocketPositionSource(ws_port)
            self.ws_source.start()

        self.logger = Logger(log_path, echo=echo)
        self.narrator = narrator or Narrator(enabled=self.settings.audio_enabled and not preview_mode)
        self.routing = routing or ORSRouter(language=self.settings.language, logger=self.logger)
        self.coordinator = GuidanceCoordinator(self.routing, narrator=self.narrator,
                                               settings=self.settings, logger=self.logger)
        self.coordinator.add_guidance_listener(self._on_guidance_event)

        self.position_source: PositionSource
        if self.ws_source:
            self.position_source = self.ws_source
        elif start_location:
            self.position_source = FixedPosition(*start_location)
        else:
            self.position_source = GPS()
        self.position_source.watch(self._on_fix)

        self.current_location: Optional[Location] = None
        self.fixes = 0
        self.finished = False
        self.last_log_update = 0
        self.start_time = 0

    def set_position_source(self, source: PositionSource):
        """Set position source (GPS, GPSRecorder, GPSPlayback, ...)"""
        self.position_source.unwatch()
        self.position_source = source
        source.watch(self._on_fix)

    def _on_fix(self, location: Location):
        self.current_location = location
        self.fixes += 1

    def _on_guidance_event(self, event: GuidanceEvent, data: dict):
        payload = _loggable(data)
        self.logger.log(f"EVENT {event.value}", payload)
        if self.ws_source:
            self.ws_source.send(event.value, payload)

        if event in ANNOUNCED_EVENTS:
            print(self._describe(event, data))
        if event == GuidanceEvent.GUIDANCE_STOPPED:
            self.finished = True

    @staticmethod
    def _describe(event: GuidanceEvent, data: dict) -> str:
        if event == GuidanceEvent.NEXT_POI_NAVIGATION:
            poi = data["target_poi"]
            return f"Next: {poi['name']} ({data['poi_index'] + 1}/{data['total_pois']}, {format_distance(data['distance'])})"
        if event == GuidanceEvent.POI_REACHED:
            return f"Reached {data['poi']['name']}"
        if event == GuidanceEvent.POI_APPROACHED:
            return f"Approaching {data['poi']['name']} ({format_distance(data['distance'])})"
        if event == GuidanceEvent.BACK_ON_TRACK_STARTED:
            return f"Off route, reconnecting in {format_distance(data['correction_distance'])}"
        if event == GuidanceEvent.RETURNED_TO_MAIN_ROUTE:
            return f"Back on route after {data['deviation_duration']:.0f}s"
        if event in (GuidanceEvent.GUIDANCE_ERROR, GuidanceEvent.ROUTING_ERROR):
            return f"Error: {data.get('message', '')} {data.get('error', '')}".strip()
        return event.value.replace("-", " ").capitalize()

    def get_state(self) -> dict:
        """Get current state as dict for logging"""
        status = self.coordinator.get_guidance_status()
        state = {
            "guidance": status.get("type"),
            "duration": round(status.get("duration", 0)),
            "gps_status": self.position_source.get_status(),
            "fixes": self.fixes,
        }
        progress = status.get("tour_progress")
        if progress:
            state["pois_visited"] = progress["pois_visited"]
            state["current_poi"] = progress["current_poi"]["name"] if progress["current_poi"] else None
        if self.current_location:
            state["location"] = {
                "lat": self.current_location.lat,
                "lon": self.current_location.lon,
                "accuracy": self.current_location.accuracy,
            }
        return state

    def periodic_update(self):
        now = time.time()
        if now - self.last_log_update >= CONFIG["log_interval"]:
            self.logger.log("STATE", self.get_state())
            self.last_log_update = now

    def _first_fix(self) -> Optional[Location]:
        def try_gps():
            loc = self.position_source.get_location(timeout=10)
            if loc:
                self.logger.log("GPS fix obtained", {"lat": loc.lat, "lon": loc.lon})
            else:
                self.logger.log("GPS attempt failed")
            return loc

        return retry_with_backoff(try_gps, max_time=30.0, initial_delay=1.0,
                                  max_delay=8.0, description="GPS fix")

    async def initialize(self) -> bool:
        """Get a first fix and start the guided tour from it"""
        self.logger.log("Initializing tour", {"pois": len(self.pois)})

        if self.start_location and not isinstance(self.position_source, GPSPlayback):
            lat, lon = self.start_location
            location = Location(lat=lat, lon=lon, accuracy=0, timestamp=time.time())
            print(f"Using provided location: {lat:.5f}, {lon:.5f}")
        else:
            print("Getting GPS fix...")
            location = await asyncio.to_thread(self._first_fix)
            if not location:
                print("Could not get GPS location")
                self.narrator.speak("Could not get GPS location", self.settings.language)
                return False
            print(f"Location: {location.lat:.5f}, {location.lon:.5f} (accuracy: {location.accuracy}m)")
        self.current_location = location

        started = await self.coordinator.start_guidance({
            "type": GuidanceType.GUIDED_TOUR,
            "route": self.pois,
            "position": location.position,
        })
        if not started:
            print("Could not start the guided tour")
            return False
        self.start_time = time.time()
        return True

    def display_tour_preview(self):
        route = self.coordinator.tour.tour_route
        print(f"\nTour: {len(self.pois)} points of interest, "
              f"{format_distance(route.distance)}, about {route.duration / 60:.0f} minutes walking")
        for i, segment in enumerate(route.segments, 1):
            print(f"  {i}. {segment.start.name} -> {segment.end.name}: {format_distance(segment.distance)}")
            for step in segment.instructions:
                print(f"       {step.text}")

    async def update(self) -> bool:
        """Poll one position and feed it to the coordinator; False when done"""
        location = await asyncio.to_thread(self.position_source.get_location, 10)
        if location is None:
            self.logger.log("No position", {"gps_status": self.position_source.get_status()})
        else:
            result = await self.coordinator.update_position(location.position)
            if result.get("error"):
                self.logger.log("Update error", {"error": result["error"]})
        self.periodic_update()
        return not self.finished

    def get_poll_interval(self) -> float:
        if isinstance(self.position_source, GPSPlayback):
            return self.position_source.get_poll_interval()
        if isinstance(self.position_source, WebSocketPositionSource):
            return 0
        return CONFIG["gps_poll_interval"]

    def is_playback_finished(self) -> bool:
        if isinstance(self.position_source, GPSPlayback):
            return self.position_source.is_finished()
        return False

    def summary(self) -> dict:
        progress = self.coordinator.tour.get_tour_progress()
        history = self.coordinator.corrector.get_deviation_history()
        return {
            "pois_visited": progress["pois_visited"],
            "total_pois": progress["total_pois"],
            "deviations": len(history),
            "corrections_completed": sum(1 for d in history if d["successful"]),
            "duration": time.time() - self.start_time if self.start_time else 0,
            "deviation_history": history,
        }

    def finish(self):
        if isinstance(self.position_source, GPSRecorder):
            self.position_source.save()
        if self.ws_source:
            self.ws_source.stop()

        summary = self.summary()
        self.logger.log("Tour summary", summary)
        print("\nTour summary:")
        print(f"  Visited: {summary['pois_visited']}/{summary['total_pois']} points of interest")
        print(f"  Duration: {summary['duration'] / 60:.1f} minutes")
        print(f"  Deviations: {summary['deviations']} ({summary['corrections_completed']} corrected)")
        for record in summary["deviation_history"]:
            duration = f"{record['duration']:.0f}s" if record["duration"] is not None else "not completed"
            print(f"    at {record['position'][0]:.5f}, {record['position'][1]:.5f}: "
                  f"{format_distance(record['correction_distance'])} off, {duration}")
        self.logger.close()

    async def run(self):
        """Run the tour"""
        print("\n=== Tourguide ===")
        print(f"Points of interest: {len(self.pois)}")
        if self.preview_mode:
            print("Mode: PREVIEW (calculate and display the tour route)")
        elif isinstance(self.position_source, GPSPlayback):
            print(f"Playback mode: {self.position_source.speed}x speed")
        else:
            print("Press Ctrl+C to stop")
        print()

        if not await self.initialize():
            self.logger.close()
            return

        if self.preview_mode:
            self.display_tour_preview()
            await self.coordinator.stop_guidance(reason="Preview")
            self.logger.close()
            return

        try:
            while await self.update():
                if self.is_playback_finished():
                    print("\nPlayback finished")
                    self.logger.log("Playback finished")
                    break
                await asyncio.sleep(self.get_poll_interval())
            await self.coordinator.stop_guidance(reason="Tour ended")
        except asyncio.CancelledError:
            print("\nTour interrupted")
            self.narrator.speak("Tour ended", self.settings.language)
            self.logger.log("Tour interrupted by user")
            raise
        finally:
            self.finish()
