"""Data classes for Tourguide."""

from dataclasses import dataclass, asdict, field, fields, replace
from enum import Enum
from typing import Any, Optional

from .config import CONFIG
from .errors import InvalidConfiguration

LatLon = tuple[float, float]


@dataclass
class Location:
    lat: float
    lon: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        return cls(**d)


class GuidanceType(str, Enum):
    """Mutually exclusive guidance modes"""
    NONE = "none"
    GUIDED_TOUR = "guided-tour"
    BACK_ON_TRACK = "back-on-track"
    FREE_NAVIGATION = "free-navigation"

    @classmethod
    def parse(cls, value) -> "GuidanceType":
        """Convert a mode name to a startable GuidanceType"""
        try:
            mode = value if isinstance(value, cls) else cls(value)
        except ValueError:
            raise InvalidConfiguration(f"Invalid guidance type: {value!r}") from None
        if mode is cls.NONE:
            raise InvalidConfiguration("Guidance type 'none' cannot be started")
        return mode


@dataclass(frozen=True)
class Waypoint:
    lat: float
    lon: float
    name: str = ""

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)


@dataclass(frozen=True)
class Instruction:
    """A single turn-by-turn step"""
    text: str
    distance: float = 0.0  # meters
    duration: float = 0.0  # seconds
    kind: str = "continue"
    way_name: Optional[str] = None
    location: Optional[LatLon] = None


@dataclass(frozen=True)
class Segment:
    """A leg between two named endpoints"""
    start: Waypoint
    end: Waypoint
    distance: float
    duration: float
    instructions: tuple[Instruction, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "instructions", tuple(self.instructions))


@dataclass(frozen=True)
class Route:
    """Ordered (lat, lon) geometry with summary and optional per-leg segments"""
    coordinates: tuple[LatLon, ...]
    distance: float = 0.0  # meters
    duration: float = 0.0  # seconds
    segments: tuple[Segment, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "coordinates", tuple(tuple(c) for c in self.coordinates))
        object.__setattr__(self, "segments", tuple(self.segments))

    @property
    def has_geometry(self) -> bool:
        return len(self.coordinates) > 0

    @property
    def instructions(self) -> list[Instruction]:
        return [step for seg in self.segments for step in seg.instructions]


@dataclass(frozen=True)
class RoutePlan:
    """What the navigation player plays: a route split into named segments"""
    id: str
    route: Route
    segments: tuple[Segment, ...]

    def __post_init__(self):
        object.__setattr__(self, "segments", tuple(self.segments))

    @property
    def destination(self) -> Optional[Waypoint]:
        return self.segments[-1].end if self.segments else None

    @classmethod
    def single(cls, plan_id: str, route: Route, start: Waypoint, end: Waypoint) -> "RoutePlan":
        """One segment from start to end carrying all of the route's instructions"""
        segment = Segment(
            start=start,
            end=end,
            distance=route.distance,
            duration=route.duration,
            instructions=route.instructions,
        )
        return cls(id=plan_id, route=route, segments=(segment,))

    @classmethod
    def from_route(cls, plan_id: str, route: Route) -> "RoutePlan":
        """Use the route's own segments, or span its geometry with one segment"""
        if route.segments:
            return cls(id=plan_id, route=route, segments=route.segments)
        if not route.has_geometry:
            return cls(id=plan_id, route=route, segments=())
        start = Waypoint(*route.coordinates[0], name="Start")
        end = Waypoint(*route.coordinates[-1], name="Destination")
        return cls.single(plan_id, route, start, end)


@dataclass(frozen=True)
class POI:
    """Point of interest on a tour"""
    id: str
    name: str
    lat: float
    lon: float
    order: int = 0
    radius: float = CONFIG["poi_radius"]  # meters
    description: Optional[str] = None

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)

    def to_waypoint(self) -> Waypoint:
        return Waypoint(self.lat, self.lon, self.name)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict, order: int = 0) -> "POI":
        try:
            return cls(
                id=str(d.get("id", d["name"])),
                name=d["name"],
                lat=float(d["lat"]),
                lon=float(d["lon"]),
                order=int(d.get("order", order)),
                radius=float(d.get("radius", CONFIG["poi_radius"])),
                description=d.get("description"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfiguration(f"Invalid POI entry {d!r}: {e}") from e


@dataclass(frozen=True)
class ReconnectionPoint:
    """Point on the main route chosen as the target of a correction"""
    lat: float
    lon: float
    route_index: int
    distance_from_user: float
    strategic: bool = False

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)

    @property
    def name(self) -> str:
        return "Strategic reconnection point" if self.strategic else "Nearest reconnection point"

    def to_waypoint(self) -> Waypoint:
        return Waypoint(self.lat, self.lon, self.name)

    def to_dict(self) -> dict:
        return {**asdict(self), "name": self.name}


@dataclass
class DeviationRecord:
    timestamp: float
    position: LatLon
    correction_distance: float
    reason: str = "User deviated from main route"
    completed_at: Optional[float] = None
    duration: Optional[float] = None
    successful: Optional[bool] = None

    def close(self, completed_at: float, successful: bool = True):
        self.completed_at = completed_at
        self.duration = completed_at - self.timestamp
        self.successful = successful

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DeviationCheck:
    """Outcome of a (possibly rate-limited) deviation check"""
    checked: bool
    deviated: bool = False
    distance: Optional[float] = None
    threshold: Optional[float] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class GuidanceSettings:
    deviation_threshold: float = CONFIG["deviation_threshold"]
    audio_enabled: bool = CONFIG["audio_enabled"]
    language: str = CONFIG["language"]
    auto_correct_deviations: bool = CONFIG["auto_correct_deviations"]
    check_interval: float = CONFIG["deviation_check_interval"]
    poi_approach_distance: float = CONFIG["poi_approach_distance"]
    auto_advance_to_next_poi: bool = CONFIG["auto_advance_to_next_poi"]
    reconnect_lookahead_points: int = CONFIG["reconnect_lookahead_points"]
    reconnect_lookahead_distance: float = CONFIG["reconnect_lookahead_distance"]
    instruction_announce_distance: float = CONFIG["instruction_announce_distance"]
    arrival_radius: float = CONFIG["arrival_radius"]

    @classmethod
    def from_config(cls) -> "GuidanceSettings":
        return cls()

    def merged(self, overrides: Optional[dict] = None) -> "GuidanceSettings":
        """Return a new settings object with overrides applied"""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise InvalidConfiguration(f"Unknown settings: {', '.join(unknown)}")
        return replace(self, **overrides)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GuidanceConfig:
    """Arguments to GuidanceCoordinator.start_guidance"""
    type: Any
    route: Any = None  # POI list for a tour, RoutePlan or Route for free navigation
    options: dict = field(default_factory=dict)
    position: Optional[LatLon] = None
    main_route: Optional[Route] = None

    @classmethod
    def from_dict(cls, d: dict) -> "GuidanceConfig":
        if "type" not in d:
            raise InvalidConfiguration("Guidance config requires a type")
        position = d.get("position", d.get("user_position"))
        return cls(
            type=d["type"],
            route=d.get("route"),
            options=dict(d.get("options") or {}),
            position=tuple(position) if position is not None else None,
            main_route=d.get("main_route"),
        )
