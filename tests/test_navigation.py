import asyncio

from tourguide.events import NavigationEvent
from tourguide.models import Instruction, Route, RoutePlan, Segment, Waypoint
from tourguide.navigation import NavigationPlayer

from fakes import ORIGIN, FakeNarrator, Recorder, offset, quiet_logger, straight_route


def build_player():
    narrator = FakeNarrator()
    player = NavigationPlayer(narrator=narrator, logger=quiet_logger())
    recorder = Recorder()
    player.add_listener(recorder)
    return player, narrator, recorder


def walk_plan(plan_id="walk"):
    end = offset(ORIGIN, north=300)
    route = straight_route(ORIGIN, end)
    turn = offset(ORIGIN, north=150)
    segment = Segment(
        start=Waypoint(*ORIGIN, name="Hotel"),
        end=Waypoint(*end, name="Museum"),
        distance=300,
        duration=214,
        instructions=(
            Instruction("Head north", distance=150, kind="depart", location=ORIGIN),
            Instruction("Turn left", distance=150, kind="left", location=turn),
            Instruction("Arrive at Museum", kind="arrive", location=end),
        ),
    )
    return RoutePlan(id=plan_id, route=route, segments=(segment,))


def test_refuses_invalid_plans():
    player, _, recorder = build_player()

    async def run():
        assert not await player.start_navigation(None)
        empty = RoutePlan.from_route("x", Route(coordinates=[]))
        assert not await player.start_navigation(empty)

    asyncio.run(run())
    assert recorder.events == []
    assert player.plan_id is None


def test_walks_plan_to_arrival():
    player, narrator, recorder = build_player()

    async def run():
        assert await player.start_navigation(walk_plan())
        for north in (10, 40, 60, 290):
            await player.update_position(offset(ORIGIN, north=north))

    asyncio.run(run())

    started = recorder.of(NavigationEvent.NAVIGATION_STARTED)[0]
    assert started["destination"] == "Museum"
    texts = [d["text"] for d in recorder.of(NavigationEvent.INSTRUCTION)]
    assert texts == ["Head north", "Turn left, then continue for 150 meters", "Arrive at Museum"]
    assert len(recorder.of(NavigationEvent.POSITION_UPDATE)) == 4
    assert recorder.names[-2:] == [NavigationEvent.DESTINATION_REACHED, NavigationEvent.NAVIGATION_STOPPED]
    assert recorder.of(NavigationEvent.NAVIGATION_STOPPED)[0] == {
        "plan_id": "walk", "reason": "arrived", "arrived": True,
    }
    assert not player.active
    assert narrator.spoken[0][0].startswith("Navigation started towards Museum")


def test_replacing_a_plan_stops_the_old_one():
    player, _, recorder = build_player()

    async def run():
        await player.start_navigation(walk_plan("first"))
        await player.start_navigation(walk_plan("second"))

    asyncio.run(run())
    stopped = recorder.of(NavigationEvent.NAVIGATION_STOPPED)
    assert stopped == [{"plan_id": "first", "reason": "replaced", "arrived": False}]
    assert player.plan_id == "second"


def test_stop_when_idle_is_silent():
    player, _, recorder = build_player()
    asyncio.run(player.stop_navigation())
    assert recorder.events == []


def test_listener_stopping_session_prevents_arrival():
    player, _, recorder = build_player()

    async def stop_on_update(event, data):
        if event == NavigationEvent.POSITION_UPDATE:
            await player.stop_navigation(reason="listener")

    player.add_listener(stop_on_update)

    async def run():
        await player.start_navigation(walk_plan())
        await player.update_position(offset(ORIGIN, north=295))

    asyncio.run(run())
    assert NavigationEvent.DESTINATION_REACHED not in recorder.names
    assert recorder.of(NavigationEvent.NAVIGATION_STOPPED)[0]["reason"] == "listener"


def test_navigation_status():
    player, _, _ = build_player()
    assert player.get_navigation_status() == {"active": False, "message": "Navigation inactive"}

    async def run():
        await player.start_navigation(walk_plan())
        await player.update_position(offset(ORIGIN, north=100))

    asyncio.run(run())
    status = player.get_navigation_status()
    assert status["plan_id"] == "walk"
    assert status["current_destination"] == "Museum"
    assert round(status["distance_to_destination"]) == 200
