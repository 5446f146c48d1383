"""Guided tour: sequential navigation through an ordered list of POIs."""

import time
from typing import Callable, Optional, Sequence, Union

from .audio import Narrator
from .config import CONFIG
from .errors import GuidanceError, InvalidConfiguration, NavigationStartFailure, RouteComputationFailure
from .events import EventEmitter, GuidanceEvent, Listener, NavigationEvent
from .logger import Logger
from .models import POI, GuidanceSettings, LatLon, Route, RoutePlan, Waypoint
from .navigation import NavigationPlayer
from .routing import RoutingProvider, fetch_route, join_routes, named_leg


class GuidedTourNavigator:
    """Drives visits to each POI in order.

    The tour holds an aggregate route (start -> POI 1 -> ... -> POI n) used for
    deviation checks, and hands one-segment plans to the navigation player for
    the leg currently being walked. ``pause``/``resume`` suspend the tour
    without losing progress.
    """

    def __init__(self, routing: RoutingProvider, player: NavigationPlayer,
                 narrator: Optional[Narrator] = None,
                 settings: Optional[GuidanceSettings] = None,
                 logger: Optional[Logger] = None,
                 clock: Callable[[], float] = time.time):
        self.routing = routing
        self.player = player
        self.narrator = narrator
        self.settings = settings or GuidanceSettings.from_config()
        self.logger = (logger or Logger()).child("tour")
        self.clock = clock
        self.events = EventEmitter("guided tour", self.logger)

        self.pois: list[POI] = []
        self.current_poi_index = 0
        self.tour_route: Optional[Route] = None
        self.start_position: Optional[LatLon] = None
        self.last_position: Optional[LatLon] = None
        self.visited: list[dict] = []
        self.approached: set[str] = set()
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

        self._active = False
        self._started = False
        self._session = 0
        self._nav_request = 0
        self._plan_seq = 0
        self._plan_id: Optional[str] = None

    def add_listener(self, callback: Listener):
        self.events.add_listener(callback)

    def remove_listener(self, callback: Listener):
        self.events.remove_listener(callback)

    def _speak(self, text: str):
        if self.narrator and self.settings.audio_enabled:
            self.narrator.speak(text, self.settings.language)

    def _distance(self, a: LatLon, b: LatLon) -> float:
        return self.routing.calculate_distance(a[0], a[1], b[0], b[1])

    # State

    def is_active(self) -> bool:
        return self._active

    def is_paused(self) -> bool:
        return self._started and not self._active

    def pause(self):
        """Suspend the tour; progress and the held route are kept"""
        if self._active:
            self._active = False
            self.logger.log("Guided tour paused", {"current_poi_index": self.current_poi_index})

    def resume(self):
        if self._started and not self._active:
            self._active = True
            self.logger.log("Guided tour resumed", {"current_poi_index": self.current_poi_index})

    def get_current_poi(self) -> Optional[POI]:
        if self.current_poi_index < len(self.pois):
            return self.pois[self.current_poi_index]
        return None

    # Lifecycle

    @staticmethod
    def _coerce_pois(pois: Sequence[Union[POI, dict]]) -> list[POI]:
        result = [p if isinstance(p, POI) else POI.from_dict(p, order=i)
                  for i, p in enumerate(pois or [])]
        return sorted(result, key=lambda p: p.order)

    async def _build_tour_route(self, session: int) -> Optional[Route]:
        """Aggregate route through every POI, or None when the tour was replaced meanwhile"""
        stops = [Waypoint(*self.start_position, name="Start")] if self.start_position else []
        stops += [poi.to_waypoint() for poi in self.pois]
        if len(stops) == 1:
            return Route(coordinates=[stops[0].position])

        legs = []
        for start, end in zip(stops, stops[1:]):
            route = await fetch_route(self.routing, start.position, end.position)
            if session != self._session:
                return None
            if route is None or not route.has_geometry:
                raise RouteComputationFailure(f"No route from {start.name} to {end.name}")
            legs.append(named_leg(route, start, end))
        return join_routes(legs)

    async def start_guided_tour(self, pois: Sequence[Union[POI, dict]], options: Optional[dict] = None,
                                position: Optional[LatLon] = None) -> bool:
        """Build the tour route and start navigating to the first POI"""
        if self._started:
            await self.stop_guided_tour()

        self._session += 1
        session = self._session
        try:
            if options:
                self.settings = self.settings.merged(options)
            self.pois = self._coerce_pois(pois)
            if not self.pois:
                raise InvalidConfiguration("No POIs provided for guided tour")

            self.current_poi_index = 0
            self.visited = []
            self.approached = set()
            self.start_position = tuple(position) if position else None
            self.last_position = self.start_position
            self.started_at = self.clock()
            self.completed_at = None

            self.logger.log("Starting guided tour", {
                "pois": len(self.pois),
                "start": self.start_position,
            })
            tour_route = await self._build_tour_route(session)
            if tour_route is None:
                return False
            self.tour_route = tour_route
            self._started = True
            self._active = True
            self.player.add_listener(self._handle_navigation_event)

            first = self.pois[0]
            if not await self.navigate_to_next_poi(first, position=self.start_position or first.position):
                if session != self._session:
                    return False
                raise NavigationStartFailure(f"Failed to start navigation to {first.name}")
        except GuidanceError as e:
            if session == self._session:
                self._reset()
            self.logger.log("Failed to start guided tour", {"error": str(e)})
            await self.events.emit(GuidanceEvent.GUIDANCE_ERROR, {
                "message": "Failed to start guided tour",
                "error": e,
            })
            return False

        if session != self._session:
            return False

        self._speak(f"Welcome to the guided tour. You will discover {len(self.pois)} points of interest. "
                    f"Follow the instructions to begin.")
        self.logger.log("Guided tour started", {
            "pois": len(self.pois),
            "distance": round(self.tour_route.distance),
        })
        await self.events.emit(GuidanceEvent.TOUR_STARTED, {
            "total_pois": len(self.pois),
            "start_position": self.start_position,
            "first_destination": self.pois[0].name,
            "total_distance": self.tour_route.distance,
            "estimated_duration": self.tour_route.duration,
        })
        return True

    def _reset(self):
        self._active = False
        self._started = False
        self._plan_id = None
        self.tour_route = None
        self.player.remove_listener(self._handle_navigation_event)

    async def _stop_player(self, reason: str):
        if self._plan_id is not None and self.player.plan_id == self._plan_id:
            await self.player.stop_navigation(reason=reason)

    async def stop_guided_tour(self):
        """Stop the tour; no-op when no tour is held"""
        self._session += 1
        if not self._started:
            return
        self.logger.log("Stopping guided tour", {"current_poi_index": self.current_poi_index})
        progress = self.get_tour_progress()
        await self._stop_player("tour stopped")
        self._reset()
        await self.events.emit(GuidanceEvent.TOUR_STOPPED, {
            "reason": "Tour stopped",
            "tour_progress": progress,
        })

    # Navigation

    async def navigate_to_next_poi(self, poi: POI, position: Optional[LatLon] = None) -> bool:
        """Route from the last known position to poi and hand it to the player"""
        if not self._active:
            self.logger.log("Tour not active, cannot navigate to POI", {"poi": poi.name})
            return False

        self._nav_request += 1
        request = self._nav_request
        start = tuple(position) if position else (self.last_position or poi.position)
        self.logger.log("Navigating to POI", {"poi": poi.name, "from": start})

        try:
            route = await fetch_route(self.routing, start, poi.position)
            error = None
        except RouteComputationFailure as e:
            route, error = None, e
        if request != self._nav_request or not self._active:
            self.logger.log("Discarding stale route", {"poi": poi.name})
            return False

        if route is None or not route.has_geometry:
            error = error or RouteComputationFailure(f"No route found to {poi.name}")
            self.logger.log("Routing error", {"poi": poi.name, "error": str(error)})
            await self.events.emit(GuidanceEvent.ROUTING_ERROR, {"target_poi": poi.to_dict(), "error": error})
            return False

        self._plan_seq += 1
        self._plan_id = f"tour-{self._plan_seq}"
        plan = RoutePlan.single(self._plan_id, route, Waypoint(*start, name="Current position"), poi.to_waypoint())
        if not await self.player.start_navigation(plan):
            error = NavigationStartFailure("Navigation player refused to start")
            await self.events.emit(GuidanceEvent.ROUTING_ERROR, {"target_poi": poi.to_dict(), "error": error})
            return False
        if request != self._nav_request:
            return False

        self._speak(f"Heading to {poi.name}. Point of interest {self.current_poi_index + 1} of {len(self.pois)}.")
        await self.events.emit(GuidanceEvent.NEXT_POI_NAVIGATION, {
            "target_poi": poi.to_dict(),
            "poi_index": self.current_poi_index,
            "total_pois": len(self.pois),
            "distance": route.distance,
        })
        return True

    async def skip_current_poi(self) -> bool:
        if not self._active:
            return False
        poi = self.get_current_poi()
        self.logger.log("Skipping POI", {"poi": poi.name if poi else None})
        await self._stop_player("poi skipped")
        self.current_poi_index += 1
        if self.current_poi_index >= len(self.pois):
            await self._complete_tour()
            return True
        return await self.navigate_to_next_poi(self.pois[self.current_poi_index])

    async def update_position(self, position: LatLon):
        """Feed a position: through the player while our leg plays, directly otherwise"""
        self.last_position = tuple(position)
        if not self._active:
            return
        if self._plan_id is not None and self.player.plan_id == self._plan_id:
            await self.player.update_position(self.last_position)
        else:
            await self._check_poi_proximity(self.last_position)

    async def _handle_navigation_event(self, event, data: dict):
        if not self._active or data.get("plan_id") != self._plan_id:
            return
        if event == NavigationEvent.POSITION_UPDATE:
            await self._check_poi_proximity(data["position"])
        elif event == NavigationEvent.NAVIGATION_STOPPED and data.get("arrived"):
            await self._handle_poi_reached()

    async def _check_poi_proximity(self, position: LatLon):
        poi = self.get_current_poi()
        if not self._active or poi is None:
            return
        distance = self._distance(position, poi.position)
        if distance <= poi.radius:
            await self._handle_poi_reached()
        elif distance <= self.settings.poi_approach_distance and poi.id not in self.approached:
            self.approached.add(poi.id)
            self.logger.log("Approaching POI", {"poi": poi.name, "distance": round(distance)})
            await self.events.emit(GuidanceEvent.POI_APPROACHED, {
                "poi": poi.to_dict(),
                "distance": distance,
                "poi_index": self.current_poi_index,
            })

    async def _handle_poi_reached(self):
        poi = self.get_current_poi()
        if poi is None or any(v["poi"]["id"] == poi.id for v in self.visited):
            return
        index = self.current_poi_index
        self.visited.append({"poi": poi.to_dict(), "visit_time": self.clock(), "poi_index": index})
        self.current_poi_index += 1

        self.logger.log("Reached POI", {"poi": poi.name, "index": index})
        self._speak(f"You have arrived at {poi.name}. {poi.description or 'Enjoy this point of interest.'}")
        await self.events.emit(GuidanceEvent.POI_REACHED, {
            "poi": poi.to_dict(),
            "poi_index": index,
            "total_pois": len(self.pois),
            "tour_progress": self.get_tour_progress(),
        })
        if not self._active:
            return

        if self.current_poi_index >= len(self.pois):
            await self._complete_tour()
        elif self.settings.auto_advance_to_next_poi:
            await self.navigate_to_next_poi(self.pois[self.current_poi_index])
        else:
            await self._stop_player("poi reached")

    async def _complete_tour(self):
        self.completed_at = self.clock()
        progress = self.get_tour_progress()
        await self._stop_player("tour completed")
        self._active = False
        self._started = False
        self.player.remove_listener(self._handle_navigation_event)

        self.logger.log("Guided tour completed", {
            "visited": len(self.visited),
            "duration": round(self.completed_at - self.started_at),
        })
        self._speak(f"Congratulations! You have completed the tour and visited {len(self.visited)} points of interest.")
        await self.events.emit(GuidanceEvent.TOUR_COMPLETED, {
            "total_pois": len(self.pois),
            "pois_visited": len(self.visited),
            "tour_duration": self.completed_at - self.started_at,
            "tour_progress": progress,
        })

    # Progress

    def estimated_time_remaining(self) -> float:
        """Seconds, from a fixed per-POI estimate"""
        if not self._started:
            return 0
        remaining = len(self.pois) - self.current_poi_index
        return remaining * CONFIG["estimated_minutes_per_poi"] * 60

    def get_tour_progress(self) -> dict:
        total = len(self.pois)
        current = self.get_current_poi()
        end = self.completed_at or self.clock()
        return {
            "active": self._active,
            "paused": self.is_paused(),
            "current_poi_index": self.current_poi_index,
            "total_pois": total,
            "pois_visited": len(self.visited),
            "progress_percentage": round(len(self.visited) / total * 100) if total else 0,
            "current_poi": current.to_dict() if current else None,
            "tour_route": self.tour_route,
            "tour_duration": end - self.started_at if self.started_at else 0,
            "estimated_time_remaining": self.estimated_time_remaining(),
        }
