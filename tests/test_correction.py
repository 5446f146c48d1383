import asyncio

import pytest

from tourguide.correction import CORRECTION_PLAN_ID, DeviationCorrector
from tourguide.errors import NoReconnectionPoint, RouteComputationFailure
from tourguide.events import GuidanceEvent, NavigationEvent
from tourguide.geo import haversine_distance
from tourguide.models import GuidanceSettings, Route
from tourguide.navigation import NavigationPlayer

from fakes import ORIGIN, FakeClock, FakeNarrator, FakeRouter, Recorder, offset, quiet_logger, straight_route

# 600 m due north, a coordinate every 20 m
MAIN_ROUTE = straight_route(ORIGIN, offset(ORIGIN, north=600))


def build_corrector(**overrides):
    router = FakeRouter()
    narrator = FakeNarrator()
    clock = FakeClock()
    logger = quiet_logger()
    settings = GuidanceSettings().merged(overrides)
    player = NavigationPlayer(narrator, settings, logger, clock)
    corrector = DeviationCorrector(router, player, narrator, settings, logger, clock)
    recorder = Recorder()
    corrector.add_listener(recorder)
    return corrector, router, clock, recorder


def test_position_on_route_is_not_deviated():
    corrector, _, _, recorder = build_corrector()
    check = asyncio.run(corrector.check_deviation(MAIN_ROUTE.coordinates[7], MAIN_ROUTE))
    assert check.checked and not check.deviated
    assert check.distance == pytest.approx(0, abs=0.01)
    assert recorder.events == []


def test_distance_is_to_nearest_route_coordinate():
    corrector, _, _, recorder = build_corrector()
    position = offset(ORIGIN, north=333, east=300)
    check = asyncio.run(corrector.check_deviation(position, MAIN_ROUTE))

    expected = min(haversine_distance(*position, *c) for c in MAIN_ROUTE.coordinates)
    assert check.deviated
    assert check.distance == pytest.approx(expected)
    assert check.threshold == 50
    detected = recorder.of(GuidanceEvent.DEVIATION_DETECTED)[0]
    assert detected["deviation_distance"] == pytest.approx(expected)


def test_checks_are_rate_limited_without_distance_calls():
    corrector, router, clock, _ = build_corrector()
    far = offset(ORIGIN, north=100, east=300)

    async def run():
        first = await corrector.check_deviation(far, MAIN_ROUTE)
        calls = router.distance_calls
        clock.advance(2)
        second = await corrector.check_deviation(far, MAIN_ROUTE)
        assert router.distance_calls == calls
        clock.advance(5)
        third = await corrector.check_deviation(far, MAIN_ROUTE)
        return first, second, third

    first, second, third = asyncio.run(run())
    assert first.checked and first.deviated
    assert not second.checked and not second.deviated
    assert second.reason == "Rate limited"
    assert third.checked


def test_deviation_reported_once_per_episode():
    corrector, _, clock, recorder = build_corrector(check_interval=0)
    far = offset(ORIGIN, north=100, east=300)

    async def run():
        await corrector.check_deviation(far, MAIN_ROUTE)
        await corrector.check_deviation(far, MAIN_ROUTE)
        await corrector.check_deviation(MAIN_ROUTE.coordinates[5], MAIN_ROUTE)
        await corrector.check_deviation(far, MAIN_ROUTE)

    asyncio.run(run())
    assert len(recorder.of(GuidanceEvent.DEVIATION_DETECTED)) == 2


def test_warning_spoken_only_without_auto_correct():
    corrector, _, _, _ = build_corrector(auto_correct_deviations=False)
    asyncio.run(corrector.check_deviation(offset(ORIGIN, north=100, east=300), MAIN_ROUTE))
    assert corrector.narrator.spoken[0][0].startswith("Attention, you are leaving the route")

    corrector, _, _, _ = build_corrector()
    asyncio.run(corrector.check_deviation(offset(ORIGIN, north=100, east=300), MAIN_ROUTE))
    assert corrector.narrator.spoken == []


def test_no_route_means_no_deviation():
    corrector, _, _, _ = build_corrector()
    check = asyncio.run(corrector.check_deviation(ORIGIN, Route(coordinates=[])))
    assert check.checked and not check.deviated
    assert corrector.find_best_reconnection_point(ORIGIN, None) is None


def test_reconnection_prefers_point_further_along():
    corrector, _, _, _ = build_corrector()
    position = offset(ORIGIN, north=300, east=80)

    point = corrector.find_best_reconnection_point(position, MAIN_ROUTE)
    assert point.strategic
    assert point.route_index == 25
    assert point.name == "Strategic reconnection point"


def test_reconnection_without_slack_is_nearest_point():
    corrector, _, _, _ = build_corrector(reconnect_lookahead_distance=0)
    position = offset(ORIGIN, north=300, east=80)

    point = corrector.find_best_reconnection_point(position, MAIN_ROUTE)
    assert point.route_index == 15
    assert not point.strategic
    assert point.distance_from_user == pytest.approx(80, abs=0.5)


def test_reconnection_window_is_clamped_at_route_end():
    corrector, _, _, _ = build_corrector()
    position = offset(ORIGIN, north=590, east=60)

    point = corrector.find_best_reconnection_point(position, MAIN_ROUTE)
    assert point.route_index == len(MAIN_ROUTE.coordinates) - 1


def test_back_on_track_route_errors():
    corrector, router, _, _ = build_corrector()
    position = offset(ORIGIN, north=300, east=80)

    with pytest.raises(RouteComputationFailure):
        asyncio.run(corrector.calculate_back_on_track_route(position, None))

    router.fail = True
    with pytest.raises(RouteComputationFailure):
        asyncio.run(corrector.calculate_back_on_track_route(position, MAIN_ROUTE))

    corrector.find_best_reconnection_point = lambda position, route: None
    with pytest.raises(NoReconnectionPoint):
        asyncio.run(corrector.calculate_back_on_track_route(position, MAIN_ROUTE))


def test_start_fails_cleanly_on_empty_correction_route():
    corrector, router, _, recorder = build_corrector()
    router.empty_geometry = True

    started = asyncio.run(corrector.start_back_on_track_navigation(offset(ORIGIN, east=80), MAIN_ROUTE))
    assert not started
    assert not corrector.is_active()
    assert corrector.player.plan_id is None
    assert isinstance(recorder.of(GuidanceEvent.GUIDANCE_ERROR)[0]["error"], RouteComputationFailure)
    assert corrector.get_deviation_history() == []


def test_routing_exception_fails_start_cleanly():
    corrector, router, _, recorder = build_corrector()
    router.error = ConnectionError("routing backend down")

    started = asyncio.run(corrector.start_back_on_track_navigation(offset(ORIGIN, east=80), MAIN_ROUTE))
    assert not started
    assert not corrector.is_active()
    assert corrector.player.plan_id is None
    error = recorder.of(GuidanceEvent.GUIDANCE_ERROR)[0]["error"]
    assert isinstance(error, RouteComputationFailure)
    assert isinstance(error.__cause__, ConnectionError)
    assert corrector.get_deviation_history() == []


def test_stop_while_navigation_starts_discards_correction():
    corrector, _, _, recorder = build_corrector()

    async def stop_on_start(event, data):
        if event == NavigationEvent.NAVIGATION_STARTED:
            await corrector.stop_back_on_track_navigation(reason="cancelled", successful=False)

    corrector.player.add_listener(stop_on_start)
    deviation = offset(ORIGIN, north=300, east=80)

    assert not asyncio.run(corrector.start_back_on_track_navigation(deviation, MAIN_ROUTE))
    assert recorder.names == [GuidanceEvent.BACK_ON_TRACK_COMPLETED]
    assert not corrector.is_active()
    assert corrector.player.plan_id is None
    assert corrector.get_deviation_history() == []


def test_correction_session_until_back_on_route():
    corrector, router, clock, recorder = build_corrector()
    deviation = offset(ORIGIN, north=300, east=80)

    async def run():
        assert await corrector.start_back_on_track_navigation(deviation, MAIN_ROUTE)
        assert corrector.player.plan_id == CORRECTION_PLAN_ID
        assert router.route_calls[-1] == (deviation, MAIN_ROUTE.coordinates[25])

        clock.advance(15)
        await corrector.update_position(offset(ORIGIN, north=330, east=70))
        assert corrector.is_active()
        progress = corrector.get_correction_progress()
        assert progress["deviation_duration"] == 15

        clock.advance(15)
        await corrector.update_position(offset(ORIGIN, north=360, east=40))

    asyncio.run(run())

    assert recorder.names == [
        GuidanceEvent.BACK_ON_TRACK_STARTED,
        GuidanceEvent.BACK_ON_TRACK_COMPLETED,
        GuidanceEvent.RETURNED_TO_MAIN_ROUTE,
    ]
    started = recorder.of(GuidanceEvent.BACK_ON_TRACK_STARTED)[0]
    assert started["reconnection_point"]["route_index"] == 25
    returned = recorder.of(GuidanceEvent.RETURNED_TO_MAIN_ROUTE)[0]
    assert returned["deviation_duration"] == 30
    assert returned["correction_successful"]

    assert not corrector.is_active()
    assert corrector.player.plan_id is None
    history = corrector.get_deviation_history()
    assert len(history) == 1
    assert history[0]["duration"] == 30 and history[0]["successful"]


def test_reaching_reconnection_point_ends_correction():
    corrector, _, _, recorder = build_corrector(deviation_threshold=5)
    deviation = offset(ORIGIN, north=300, east=80)

    async def run():
        await corrector.start_back_on_track_navigation(deviation, MAIN_ROUTE)
        target = corrector.target_reconnection_point.position
        await corrector.update_position(offset(target, east=10))

    asyncio.run(run())
    assert GuidanceEvent.RETURNED_TO_MAIN_ROUTE in recorder.names


def test_stop_is_idempotent():
    corrector, _, _, recorder = build_corrector()

    async def run():
        await corrector.start_back_on_track_navigation(offset(ORIGIN, east=80), MAIN_ROUTE)
        await corrector.stop_back_on_track_navigation(reason="user", successful=False)
        await corrector.stop_back_on_track_navigation()

    asyncio.run(run())
    completed = recorder.of(GuidanceEvent.BACK_ON_TRACK_COMPLETED)
    assert completed == [{"reason": "user", "successful": False}]
    assert corrector.get_current_correction() is None
    assert corrector.get_correction_progress()["active"] is False


def test_restarting_replaces_running_correction():
    corrector, _, _, recorder = build_corrector()

    async def run():
        await corrector.start_back_on_track_navigation(offset(ORIGIN, east=80), MAIN_ROUTE)
        await corrector.start_back_on_track_navigation(offset(ORIGIN, north=400, east=90), MAIN_ROUTE)

    asyncio.run(run())
    assert recorder.names == [
        GuidanceEvent.BACK_ON_TRACK_STARTED,
        GuidanceEvent.BACK_ON_TRACK_COMPLETED,
        GuidanceEvent.BACK_ON_TRACK_STARTED,
    ]
    assert corrector.get_current_correction()["deviation_point"] == offset(ORIGIN, north=400, east=90)
    assert len(corrector.get_deviation_history()) == 2


def test_update_settings():
    corrector, _, _, _ = build_corrector()
    corrector.update_settings({"deviation_threshold": 75})
    assert corrector.settings.deviation_threshold == 75


def test_deviation_info_while_correcting():
    corrector, _, clock, _ = build_corrector()
    deviation = offset(ORIGIN, north=300, east=80)

    async def run():
        await corrector.start_back_on_track_navigation(deviation, MAIN_ROUTE)
        clock.advance(12)

    asyncio.run(run())
    info = corrector.get_deviation_info()
    assert info["correction_active"]
    assert info["deviation_point"] == deviation
    assert info["deviation_duration"] == 12
    assert info["target_reconnection_point"]["strategic"]
    assert info["correction_progress"]["distance_to_reconnection"] is None
    assert len(info["deviation_history"]) == 1
