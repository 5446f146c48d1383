"""Deviation detection and back-on-track correction."""

import time
from typing import Callable, Optional

from .audio import Narrator
from .errors import GuidanceError, NavigationStartFailure, NoReconnectionPoint, RouteComputationFailure
from .events import EventEmitter, GuidanceEvent, Listener, NavigationEvent
from .geo import format_distance, nearest_point
from .logger import Logger
from .models import (DeviationCheck, DeviationRecord, GuidanceSettings, LatLon, ReconnectionPoint,
                     Route, RoutePlan, Waypoint)
from .navigation import NavigationPlayer
from .routing import RoutingProvider, fetch_route

CORRECTION_PLAN_ID = "back-on-track"


class DeviationCorrector:
    """Detects when the walker leaves a route and guides them back onto it.

    ``check_deviation`` measures the distance from a position to the nearest
    coordinate of the route, at most once per ``settings.check_interval``.
    ``start_back_on_track_navigation`` routes to a reconnection point on the
    main route and plays that correction route; the correction ends when the
    walker is within ``settings.deviation_threshold`` of the main route again.
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
        self.logger = (logger or Logger()).child("back-on-track")
        self.clock = clock
        self.events = EventEmitter("back-on-track", self.logger)

        self.active = False
        self.main_route: Optional[Route] = None
        self.deviation_point: Optional[LatLon] = None
        self.deviation_start_time: Optional[float] = None
        self.correction_route: Optional[Route] = None
        self.target_reconnection_point: Optional[ReconnectionPoint] = None
        self.last_position: Optional[LatLon] = None
        self.deviation_history: list[DeviationRecord] = []

        self._last_check: Optional[float] = None
        self._deviation_reported = False
        self._generation = 0

    def add_listener(self, callback: Listener):
        self.events.add_listener(callback)

    def remove_listener(self, callback: Listener):
        self.events.remove_listener(callback)

    def update_settings(self, overrides: dict):
        self.settings = self.settings.merged(overrides)

    def is_active(self) -> bool:
        return self.active

    def _speak(self, text: str):
        if self.narrator and self.settings.audio_enabled:
            self.narrator.speak(text, self.settings.language)

    def _distance_to_route(self, position: LatLon, route: Route) -> tuple[int, float]:
        return nearest_point(position, route.coordinates, self.routing.calculate_distance)

    # Detection

    async def check_deviation(self, position: LatLon, main_route: Optional[Route]) -> DeviationCheck:
        """Rate-limited distance check against main_route"""
        now = self.clock()
        if self._last_check is not None and now - self._last_check < self.settings.check_interval:
            return DeviationCheck(checked=False, reason="Rate limited")
        self._last_check = now

        if main_route is None or not main_route.has_geometry:
            return DeviationCheck(checked=True, deviated=False, reason="No main route to check against")

        _, distance = self._distance_to_route(position, main_route)
        threshold = self.settings.deviation_threshold
        deviated = distance > threshold

        if not deviated:
            self._deviation_reported = False
        elif not self.active and not self._deviation_reported:
            self._deviation_reported = True
            self.logger.log("Deviation detected", {
                "position": position,
                "distance": round(distance, 1),
                "threshold": threshold,
            })
            if not self.settings.auto_correct_deviations:
                self._speak(f"Attention, you are leaving the route. "
                            f"You are {format_distance(distance)} away from it.")
            await self.events.emit(GuidanceEvent.DEVIATION_DETECTED, {
                "position": position,
                "deviation_distance": distance,
                "threshold": threshold,
            })

        return DeviationCheck(checked=True, deviated=deviated, distance=distance, threshold=threshold)

    def find_best_reconnection_point(self, position: LatLon, main_route: Optional[Route]) -> Optional[ReconnectionPoint]:
        """Nearest route coordinate, or a little further along the route when one is close enough.

        The look-ahead covers up to ``reconnect_lookahead_points`` coordinates
        after the nearest one. Any of them closer than the nearest distance plus
        ``reconnect_lookahead_distance`` replaces the choice, so the furthest
        qualifying one wins and the walker is not sent back along the route.
        """
        if main_route is None or not main_route.has_geometry:
            return None

        coordinates = main_route.coordinates
        best_index, min_distance = self._distance_to_route(position, main_route)
        lat, lon = coordinates[best_index]
        best = ReconnectionPoint(lat=lat, lon=lon, route_index=best_index, distance_from_user=min_distance)

        steps = min(self.settings.reconnect_lookahead_points, len(coordinates) - best_index - 1)
        for i in range(best_index + 1, best_index + steps + 1):
            lat, lon = coordinates[i]
            distance = self.routing.calculate_distance(position[0], position[1], lat, lon)
            if distance < min_distance + self.settings.reconnect_lookahead_distance:
                best = ReconnectionPoint(lat=lat, lon=lon, route_index=i,
                                         distance_from_user=distance, strategic=True)
        return best

    async def calculate_back_on_track_route(self, position: LatLon, main_route: Optional[Route]) -> dict:
        """Correction route from position to the best reconnection point.

        Raises RouteComputationFailure or NoReconnectionPoint.
        """
        if main_route is None or not main_route.has_geometry:
            raise RouteComputationFailure("No main route provided for back-on-track calculation")

        point = self.find_best_reconnection_point(position, main_route)
        if point is None:
            raise NoReconnectionPoint("No suitable reconnection point found on main route")

        route = await fetch_route(self.routing, tuple(position), point.position)
        if route is None or not route.has_geometry:
            raise RouteComputationFailure("Failed to calculate correction route")

        return {
            "correction_route": route,
            "reconnection_point": point,
            "deviation_distance": self.routing.calculate_distance(position[0], position[1], point.lat, point.lon),
            "estimated_time": route.duration,
        }

    # Correction session

    async def start_back_on_track_navigation(self, position: LatLon, main_route: Optional[Route]) -> bool:
        """Start guiding the walker from position back onto main_route"""
        if self.active:
            await self.stop_back_on_track_navigation(reason="Correction restarted")

        self._generation += 1
        generation = self._generation
        position = tuple(position)
        try:
            result = await self.calculate_back_on_track_route(position, main_route)
            if generation != self._generation:
                self.logger.log("Discarding stale correction route")
                return False

            point = result["reconnection_point"]
            self.active = True
            self.main_route = main_route
            self.deviation_point = position
            self.deviation_start_time = self.clock()
            self.correction_route = result["correction_route"]
            self.target_reconnection_point = point
            self.last_position = position

            plan = RoutePlan.single(CORRECTION_PLAN_ID, self.correction_route,
                                    Waypoint(*position, name="Deviation point"), point.to_waypoint())
            self.player.add_listener(self._handle_navigation_event)
            if not await self.player.start_navigation(plan):
                raise NavigationStartFailure("Navigation player refused to start correction navigation")
            if generation != self._generation:
                self.logger.log("Correction stopped while starting")
                return False
        except GuidanceError as e:
            if generation == self._generation:
                self._clear()
            self.logger.log("Failed to start back-on-track navigation", {"error": str(e)})
            await self.events.emit(GuidanceEvent.GUIDANCE_ERROR, {
                "message": "Failed to start back-on-track navigation",
                "error": e,
            })
            return False

        self.deviation_history.append(DeviationRecord(
            timestamp=self.deviation_start_time,
            position=position,
            correction_distance=result["deviation_distance"],
        ))
        self.logger.log("Back-on-track navigation started", {
            "deviation_point": position,
            "reconnection_point": point.position,
            "route_index": point.route_index,
            "strategic": point.strategic,
            "distance": round(result["deviation_distance"], 1),
        })
        self._speak(f"You have left the route. Guiding you back to it, "
                    f"{format_distance(result['deviation_distance'])} away.")
        await self.events.emit(GuidanceEvent.BACK_ON_TRACK_STARTED, {
            "deviation_point": position,
            "reconnection_point": point.to_dict(),
            "correction_distance": result["deviation_distance"],
            "estimated_time": result["estimated_time"],
        })
        return True

    def _clear(self):
        self.active = False
        self.player.remove_listener(self._handle_navigation_event)
        self.main_route = None
        self.deviation_point = None
        self.deviation_start_time = None
        self.correction_route = None
        self.target_reconnection_point = None

    async def stop_back_on_track_navigation(self, reason: str = "Back-on-track navigation stopped",
                                            successful: bool = True):
        """End the correction session; no-op when none is running"""
        self._generation += 1
        if not self.active:
            return
        self.active = False
        if self.player.plan_id == CORRECTION_PLAN_ID:
            await self.player.stop_navigation(reason="correction stopped")
        self._clear()

        self.logger.log("Back-on-track navigation stopped", {"reason": reason})
        await self.events.emit(GuidanceEvent.BACK_ON_TRACK_COMPLETED, {
            "reason": reason,
            "successful": successful,
        })

    async def update_position(self, position: LatLon):
        self.last_position = tuple(position)
        if not self.active:
            return
        if self.player.plan_id == CORRECTION_PLAN_ID:
            await self.player.update_position(self.last_position)
        else:
            await self.is_back_on_main_route(self.last_position, self.main_route)

    async def is_back_on_main_route(self, position: LatLon, main_route: Optional[Route]) -> bool:
        """Whether position is within the threshold; ends an active correction when it is"""
        if main_route is None or not main_route.has_geometry:
            return False
        _, distance = self._distance_to_route(position, main_route)
        back = distance <= self.settings.deviation_threshold
        if back and self.active:
            await self._handle_return_to_main_route()
        return back

    async def _handle_navigation_event(self, event, data: dict):
        if not self.active or data.get("plan_id") != CORRECTION_PLAN_ID:
            return
        if event == NavigationEvent.POSITION_UPDATE:
            self.last_position = tuple(data["position"])
            await self.is_back_on_main_route(self.last_position, self.main_route)
        elif event == NavigationEvent.NAVIGATION_STOPPED and data.get("arrived"):
            # Reached the reconnection point, which lies on the main route
            await self._handle_return_to_main_route()

    async def _handle_return_to_main_route(self):
        if not self.active:
            return
        started = self.deviation_start_time
        point = self.target_reconnection_point
        now = self.clock()

        await self.stop_back_on_track_navigation(reason="Returned to main route")

        if self.deviation_history:
            self.deviation_history[-1].close(now, successful=True)
        self._deviation_reported = False

        self.logger.log("Returned to main route", {"duration": round(now - started, 1)})
        self._speak("You are back on the route. Enjoy the rest of your visit.")
        await self.events.emit(GuidanceEvent.RETURNED_TO_MAIN_ROUTE, {
            "deviation_duration": now - started,
            "correction_successful": True,
            "reconnection_point": point.to_dict() if point else None,
        })

    # Status

    def get_correction_progress(self) -> dict:
        if not self.active or self.correction_route is None:
            return {"active": False, "message": "No active correction"}
        return {
            "active": True,
            "deviation_duration": self.clock() - self.deviation_start_time,
            "target_point": self.target_reconnection_point.to_dict(),
            "correction_distance": self.correction_route.distance,
            "estimated_time_to_reconnection": self.correction_route.duration,
            "distance_to_reconnection": self.player.distance_to_destination()
            if self.player.plan_id == CORRECTION_PLAN_ID else None,
        }

    def get_current_correction(self) -> Optional[dict]:
        if not self.active:
            return None
        return {
            "deviation_point": self.deviation_point,
            "target_reconnection_point": self.target_reconnection_point.to_dict(),
            "correction_route": self.correction_route,
            "start_time": self.deviation_start_time,
        }

    def get_deviation_history(self) -> list[dict]:
        return [record.to_dict() for record in self.deviation_history]

    def get_deviation_info(self) -> dict:
        return {
            "correction_active": self.active,
            "deviation_point": self.deviation_point,
            "deviation_start_time": self.deviation_start_time,
            "deviation_duration": self.clock() - self.deviation_start_time if self.deviation_start_time else 0,
            "target_reconnection_point": self.target_reconnection_point.to_dict()
            if self.target_reconnection_point else None,
            "correction_route": self.correction_route,
            "deviation_history": self.get_deviation_history(),
            "correction_progress": self.get_correction_progress(),
        }
