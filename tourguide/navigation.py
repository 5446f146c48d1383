"""Turn-by-turn playback of a route plan against incoming positions."""

import time
from typing import Callable, Optional

from .audio import Narrator
from .events import EventEmitter, Listener, NavigationEvent
from .geo import format_distance, haversine_distance
from .logger import Logger
from .models import GuidanceSettings, Instruction, LatLon, RoutePlan


class NavigationPlayer:
    """Plays one RoutePlan at a time.

    Every session gets a fresh token; work resumed after an await checks the
    token so a session stopped or replaced by a listener is not touched again.
    """

    def __init__(self, narrator: Optional[Narrator] = None,
                 settings: Optional[GuidanceSettings] = None,
                 logger: Optional[Logger] = None,
                 clock: Callable[[], float] = time.time):
        self.narrator = narrator
        self.settings = settings or GuidanceSettings.from_config()
        self.logger = (logger or Logger()).child("navigation")
        self.clock = clock
        self.events = EventEmitter("navigation", self.logger)

        self.plan: Optional[RoutePlan] = None
        self.active = False
        self.current_segment = 0
        self.current_instruction = 0
        self.announced: set[tuple[int, int]] = set()
        self.last_position: Optional[LatLon] = None
        self.started_at: Optional[float] = None
        self._token = 0

    def add_listener(self, callback: Listener):
        self.events.add_listener(callback)

    def remove_listener(self, callback: Listener):
        self.events.remove_listener(callback)

    @property
    def plan_id(self) -> Optional[str]:
        return self.plan.id if self.active and self.plan else None

    def _speak(self, text: str):
        if self.narrator and self.settings.audio_enabled:
            self.narrator.speak(text, self.settings.language)

    def _distance(self, a: LatLon, b: LatLon) -> float:
        return haversine_distance(a[0], a[1], b[0], b[1])

    async def start_navigation(self, plan: Optional[RoutePlan]) -> bool:
        """Start playing plan, replacing any running session"""
        if plan is None or not plan.segments or not plan.route.has_geometry:
            self.logger.log("Cannot start navigation: invalid route plan", {
                "plan_id": plan.id if plan else None,
            })
            return False

        if self.active:
            await self.stop_navigation(reason="replaced")

        self._token += 1
        self.plan = plan
        self.active = True
        self.current_segment = 0
        self.current_instruction = 0
        self.announced = set()
        self.started_at = self.clock()

        destination = plan.destination
        self.logger.log("Navigation started", {
            "plan_id": plan.id,
            "destination": destination.name,
            "distance": round(plan.route.distance),
            "duration": round(plan.route.duration),
        })
        self._speak(f"Navigation started towards {destination.name or 'your destination'}. "
                    f"Total distance {format_distance(plan.route.distance)}.")

        await self.events.emit(NavigationEvent.NAVIGATION_STARTED, {
            "plan_id": plan.id,
            "destination": destination.name,
            "total_distance": plan.route.distance,
            "total_duration": plan.route.duration,
        })
        return True

    async def stop_navigation(self, reason: str = "stopped", arrived: bool = False):
        """End the session; no-op when nothing is playing"""
        if not self.active:
            return
        plan_id = self.plan.id
        self._token += 1
        self.active = False
        self.plan = None
        self.current_segment = 0
        self.current_instruction = 0
        self.announced = set()

        self.logger.log("Navigation stopped", {"plan_id": plan_id, "reason": reason})
        await self.events.emit(NavigationEvent.NAVIGATION_STOPPED, {
            "plan_id": plan_id,
            "reason": reason,
            "arrived": arrived,
        })

    def _advance_segment(self, position: LatLon):
        segments = self.plan.segments
        while self.current_segment < len(segments) - 1:
            end = segments[self.current_segment].end
            if self._distance(position, end.position) > self.settings.arrival_radius:
                return
            self.current_segment += 1
            self.current_instruction = 0
            self._speak(f"Heading to {segments[self.current_segment].end.name}")

    def _next_instruction(self, position: LatLon) -> Optional[Instruction]:
        """The pending instruction, once it is within announcing distance"""
        instructions = self.plan.segments[self.current_segment].instructions
        while self.current_instruction < len(instructions):
            instruction = instructions[self.current_instruction]
            key = (self.current_segment, self.current_instruction)
            if instruction.location is None or key in self.announced:
                self.current_instruction += 1
                continue
            if self._distance(position, instruction.location) > self.settings.instruction_announce_distance:
                return None
            self.announced.add(key)
            self.current_instruction += 1
            return instruction
        return None

    @staticmethod
    def instruction_text(instruction: Instruction) -> str:
        text = instruction.text
        if instruction.kind not in ("arrive", "depart") and instruction.distance > 0:
            text += f", then continue for {format_distance(instruction.distance)}"
        return text

    def distance_to_destination(self, position: Optional[LatLon] = None) -> Optional[float]:
        position = position or self.last_position
        if not self.active or position is None:
            return None
        return self._distance(position, self.plan.destination.position)

    async def update_position(self, position: LatLon):
        """Advance instructions, report the position and detect arrival"""
        if not self.active:
            return
        token = self._token
        plan_id = self.plan.id
        self.last_position = position

        self._advance_segment(position)
        instruction = self._next_instruction(position)
        if instruction:
            text = self.instruction_text(instruction)
            self._speak(text)
            await self.events.emit(NavigationEvent.INSTRUCTION, {
                "plan_id": plan_id,
                "text": text,
                "kind": instruction.kind,
                "distance": instruction.distance,
                "location": instruction.location,
            })
            if token != self._token:
                return

        remaining = self.distance_to_destination(position)
        await self.events.emit(NavigationEvent.POSITION_UPDATE, {
            "plan_id": plan_id,
            "position": position,
            "current_segment": self.current_segment,
            "current_instruction": self.current_instruction,
            "distance_to_destination": remaining,
        })
        if token != self._token:
            return

        if remaining is not None and remaining <= self.settings.arrival_radius:
            destination = self.plan.destination
            self._speak("You have arrived at your destination.")
            await self.events.emit(NavigationEvent.DESTINATION_REACHED, {
                "plan_id": plan_id,
                "destination": destination.name,
                "position": position,
            })
            if token == self._token:
                await self.stop_navigation(reason="arrived", arrived=True)

    def get_navigation_status(self) -> dict:
        if not self.active:
            return {"active": False, "message": "Navigation inactive"}

        segments = self.plan.segments
        remaining = segments[self.current_segment:]
        return {
            "active": True,
            "plan_id": self.plan.id,
            "current_segment": self.current_segment,
            "total_segments": len(segments),
            "progress": self.current_segment / len(segments) * 100,
            "current_destination": segments[self.current_segment].end.name,
            "remaining_distance": sum(s.distance for s in remaining),
            "remaining_duration": sum(s.duration for s in remaining),
            "distance_to_destination": self.distance_to_destination(),
        }
