"""Guidance coordinator: owns the active guidance mode and switches between them."""

import time
from typing import Callable, Optional, Union

from .audio import Narrator
from .correction import DeviationCorrector
from .errors import GuidanceError, InvalidConfiguration, NavigationStartFailure
from .events import EventEmitter, GuidanceEvent, Listener, NavigationEvent
from .logger import Logger
from .models import GuidanceConfig, GuidanceSettings, GuidanceType, LatLon, Route, RoutePlan
from .navigation import NavigationPlayer
from .routing import RoutingProvider
from .tour import GuidedTourNavigator

FREE_NAVIGATION_PLAN_ID = "free-navigation"


class GuidanceCoordinator:
    """Single owner of "which guidance mode is active".

    Starting a mode tears down the previous one first. While a guided tour is
    running, positions are checked for deviation; with auto-correction on, a
    deviation pauses the tour and starts back-on-track guidance, and returning
    to the route resumes the tour toward the POI it was heading to.

    Every start or stop bumps a session generation; results of a start that
    finish after the session changed are discarded.
    """

    def __init__(self, routing: RoutingProvider, player: Optional[NavigationPlayer] = None,
                 narrator: Optional[Narrator] = None,
                 settings: Optional[GuidanceSettings] = None,
                 logger: Optional[Logger] = None,
                 clock: Callable[[], float] = time.time):
        self.routing = routing
        self.narrator = narrator
        self.logger = (logger or Logger()).child("guidance")
        self.clock = clock
        self.settings = settings or GuidanceSettings.from_config()
        self.player = player or NavigationPlayer(narrator, self.settings, self.logger, clock)
        self.player.settings = self.settings
        self.events = EventEmitter("guidance", self.logger)

        self.tour = GuidedTourNavigator(routing, self.player, narrator, self.settings, self.logger, clock)
        self.corrector = DeviationCorrector(routing, self.player, narrator, self.settings, self.logger, clock)
        self.tour.add_listener(self._forward_tour_event)
        self.corrector.add_listener(self._forward_correction_event)
        self.player.add_listener(self._handle_player_event)

        self.active_type = GuidanceType.NONE
        self.start_time: Optional[float] = None
        self.main_route: Optional[Route] = None
        self.last_position: Optional[LatLon] = None
        self._generation = 0

    # Listeners

    def add_guidance_listener(self, callback: Listener):
        self.events.add_listener(callback)

    def remove_guidance_listener(self, callback: Listener):
        self.events.remove_listener(callback)

    async def _forward_tour_event(self, event: GuidanceEvent, data: dict):
        await self.events.emit(event, {**data, "source": GuidanceType.GUIDED_TOUR.value})
        if event == GuidanceEvent.TOUR_COMPLETED and self.active_type == GuidanceType.GUIDED_TOUR:
            await self.stop_guidance(reason="Tour completed")

    async def _forward_correction_event(self, event: GuidanceEvent, data: dict):
        await self.events.emit(event, {**data, "source": GuidanceType.BACK_ON_TRACK.value})
        if event == GuidanceEvent.RETURNED_TO_MAIN_ROUTE:
            await self._handle_return_to_main_route(data)

    # Settings

    def get_settings(self) -> GuidanceSettings:
        return self.settings

    def update_settings(self, overrides: dict):
        """Replace the shared settings object everywhere"""
        self._apply_settings(self.settings.merged(overrides))
        self.logger.log("Guidance settings updated", self.settings.to_dict())

    def _apply_settings(self, settings: GuidanceSettings):
        self.settings = settings
        self.player.settings = settings
        self.tour.settings = settings
        self.corrector.settings = settings

    # Lifecycle

    async def start_guidance(self, config: Union[GuidanceConfig, dict]) -> bool:
        """Start a guidance mode, stopping the active one first"""
        if isinstance(config, dict):
            try:
                config = GuidanceConfig.from_dict(config)
            except InvalidConfiguration as e:
                await self._report_start_error(e, config)
                return False

        try:
            mode = GuidanceType.parse(config.type)
            settings = self.settings.merged(config.options)
            self._validate(mode, config)
        except InvalidConfiguration as e:
            await self._report_start_error(e, config)
            return False

        if self.active_type != GuidanceType.NONE:
            await self.stop_guidance(reason=f"Switching to {mode.value}")
        else:
            await self._cancel_pending()

        self._generation += 1
        generation = self._generation
        self._apply_settings(settings)
        self.logger.log("Starting guidance", {"type": mode.value})

        try:
            if mode == GuidanceType.GUIDED_TOUR:
                ok = await self.tour.start_guided_tour(config.route, position=config.position)
                main_route = self.tour.tour_route
            elif mode == GuidanceType.BACK_ON_TRACK:
                ok = await self.corrector.start_back_on_track_navigation(config.position, config.main_route)
                main_route = config.main_route
            else:
                plan = config.route if isinstance(config.route, RoutePlan) \
                    else RoutePlan.from_route(FREE_NAVIGATION_PLAN_ID, config.route)
                ok = await self.player.start_navigation(plan)
                if not ok:
                    raise NavigationStartFailure("Navigation player refused to start")
                main_route = None
        except GuidanceError as e:
            if generation == self._generation:
                await self._teardown(mode)
            await self._report_start_error(e, config)
            return False

        if generation != self._generation:
            self.logger.log("Discarding stale guidance start", {"type": mode.value})
            if ok:
                await self._teardown(mode)
            return False
        if not ok:
            self.logger.log("Guidance failed to start", {"type": mode.value})
            return False

        self.active_type = mode
        self.start_time = self.clock()
        self.main_route = main_route
        self.logger.log("Guidance started", {"type": mode.value})
        await self.events.emit(GuidanceEvent.GUIDANCE_STARTED, {
            "type": mode.value,
            "start_time": self.start_time,
            "config": config,
        })
        return True

    @staticmethod
    def _validate(mode: GuidanceType, config: GuidanceConfig):
        if mode == GuidanceType.GUIDED_TOUR:
            if not config.route:
                raise InvalidConfiguration("A guided tour needs a list of POIs as its route")
        elif mode == GuidanceType.BACK_ON_TRACK:
            if config.position is None or config.main_route is None:
                raise InvalidConfiguration("Back-on-track guidance needs a position and a main route")
            if not isinstance(config.main_route, Route):
                raise InvalidConfiguration("Back-on-track main route must be a Route")
        elif not isinstance(config.route, (Route, RoutePlan)):
            raise InvalidConfiguration("Free navigation needs a Route or RoutePlan")

    async def _report_start_error(self, error: GuidanceError, config):
        self.logger.log("Failed to start guidance", {"error": str(error)})
        await self.events.emit(GuidanceEvent.GUIDANCE_ERROR, {
            "message": f"Failed to start guidance: {error}",
            "error": error,
            "config": config,
        })

    async def _teardown(self, mode: GuidanceType):
        """Stop whatever a start of mode may have left running"""
        if mode == GuidanceType.GUIDED_TOUR:
            await self.corrector.stop_back_on_track_navigation(reason="Guidance stopped", successful=False)
            await self.tour.stop_guided_tour()
        elif mode == GuidanceType.BACK_ON_TRACK:
            await self.corrector.stop_back_on_track_navigation(reason="Guidance stopped", successful=False)
            if self.tour.is_paused():
                await self.tour.stop_guided_tour()
        elif mode == GuidanceType.FREE_NAVIGATION:
            if self.player.plan_id is not None:
                await self.player.stop_navigation(reason="guidance stopped")

    async def _cancel_pending(self):
        """Invalidate sub-service starts still waiting on the routing provider"""
        await self.tour.stop_guided_tour()
        await self.corrector.stop_back_on_track_navigation()

    async def _handle_player_event(self, event: NavigationEvent, data: dict):
        if event == NavigationEvent.NAVIGATION_STOPPED and data.get("arrived") \
                and self.active_type == GuidanceType.FREE_NAVIGATION:
            await self.stop_guidance(reason="Destination reached")

    async def stop_guidance(self, reason: str = "Guidance stopped"):
        """Stop the active mode; no-op when idle"""
        self._generation += 1
        if self.active_type == GuidanceType.NONE:
            await self._cancel_pending()
            return

        previous = self.active_type
        self.logger.log("Stopping guidance", {"type": previous.value, "reason": reason})
        await self._teardown(previous)

        self.active_type = GuidanceType.NONE
        self.start_time = None
        self.main_route = None
        await self.events.emit(GuidanceEvent.GUIDANCE_STOPPED, {
            "previous_type": previous.value,
            "reason": reason,
        })

    # Position updates

    async def update_position(self, position: LatLon) -> dict:
        """Feed a position to the active mode and return its status"""
        if self.active_type == GuidanceType.NONE:
            return {"guidance": False, "message": "No active guidance"}

        position = tuple(position)
        self.last_position = position
        try:
            if self.main_route is not None and self.active_type != GuidanceType.BACK_ON_TRACK:
                check = await self.corrector.check_deviation(position, self.main_route)
                if check.deviated and self.settings.auto_correct_deviations \
                        and self.active_type == GuidanceType.GUIDED_TOUR:
                    await self._handle_deviation(position, check.distance)

            if self.active_type == GuidanceType.GUIDED_TOUR:
                await self.tour.update_position(position)
            elif self.active_type == GuidanceType.BACK_ON_TRACK:
                await self.corrector.update_position(position)
            elif self.active_type == GuidanceType.FREE_NAVIGATION:
                await self.player.update_position(position)
        except GuidanceError as e:
            self.logger.log("Position update failed", {"error": str(e)})
            return {"guidance": False, "error": str(e)}

        if self.active_type == GuidanceType.NONE:
            return {"guidance": False, "message": "Guidance ended", "position": position}

        status = self._mode_status()
        await self.events.emit(GuidanceEvent.POSITION_UPDATED, {
            "position": position,
            "guidance_type": self.active_type.value,
            "guidance_info": status,
        })
        return {"guidance": True, "type": self.active_type.value, "position": position, **status}

    async def _handle_deviation(self, position: LatLon, distance: float):
        """GUIDED_TOUR -> BACK_ON_TRACK, keeping the tour's progress"""
        generation = self._generation
        progress = self.tour.get_tour_progress()
        self.tour.pause()

        started = False
        try:
            started = await self.corrector.start_back_on_track_navigation(position, self.main_route)
        finally:
            if not started and generation == self._generation:
                self.logger.log("Correction failed, resuming tour")
                self.tour.resume()
        if generation != self._generation or not started:
            return

        self.active_type = GuidanceType.BACK_ON_TRACK
        await self.events.emit(GuidanceEvent.DEVIATION_DETECTED, {
            "position": position,
            "deviation_distance": distance,
            "threshold": self.settings.deviation_threshold,
            "previous_guidance": GuidanceType.GUIDED_TOUR.value,
            "tour_progress": progress,
        })

    async def _handle_return_to_main_route(self, data: dict):
        """BACK_ON_TRACK -> GUIDED_TOUR, or end of a standalone correction"""
        if self.active_type != GuidanceType.BACK_ON_TRACK:
            return
        await self.corrector.stop_back_on_track_navigation(reason="Returned to main route")

        if not self.tour.is_paused():
            await self.stop_guidance(reason="Returned to main route")
            return

        self.tour.resume()
        self.active_type = GuidanceType.GUIDED_TOUR
        poi = self.tour.get_current_poi()
        self.logger.log("Resuming guided tour", {"poi": poi.name if poi else None})
        if poi is not None:
            await self.tour.navigate_to_next_poi(poi, position=self.last_position)
        await self.events.emit(GuidanceEvent.RETURNED_TO_MAIN_ROUTE, {
            **data,
            "source": "coordinator",
            "resumed_guidance": GuidanceType.GUIDED_TOUR.value,
            "current_poi": poi.to_dict() if poi else None,
        })

    # Status

    def _mode_status(self) -> dict:
        if self.active_type == GuidanceType.GUIDED_TOUR:
            return {"tour_progress": self.tour.get_tour_progress()}
        if self.active_type == GuidanceType.BACK_ON_TRACK:
            return {"correction_progress": self.corrector.get_correction_progress()}
        if self.active_type == GuidanceType.FREE_NAVIGATION:
            return {"navigation_status": self.player.get_navigation_status()}
        return {}

    def get_guidance_duration(self) -> float:
        return self.clock() - self.start_time if self.start_time is not None else 0

    def get_guidance_status(self) -> dict:
        if self.active_type == GuidanceType.NONE:
            return {"active": False, "type": None, "message": "No active guidance"}
        return {
            "active": True,
            "type": self.active_type.value,
            "start_time": self.start_time,
            "duration": self.get_guidance_duration(),
            **self._mode_status(),
        }

    def get_active_guidance_type(self) -> GuidanceType:
        return self.active_type

    def is_guided_tour_active(self) -> bool:
        return self.active_type == GuidanceType.GUIDED_TOUR

    def is_back_on_track_active(self) -> bool:
        return self.active_type == GuidanceType.BACK_ON_TRACK

    def get_service(self, name: str):
        services = {
            GuidanceType.GUIDED_TOUR.value: self.tour,
            GuidanceType.BACK_ON_TRACK.value: self.corrector,
            "navigation": self.player,
        }
        return services.get(name)
