import asyncio

from tourguide.events import EventEmitter, GuidanceEvent

from fakes import Recorder, quiet_logger


def test_sync_and_async_listeners_in_order():
    emitter = EventEmitter("test", quiet_logger())
    calls = []

    def first(event, data):
        calls.append(("first", data["n"]))

    async def second(event, data):
        await asyncio.sleep(0)
        calls.append(("second", data["n"]))

    emitter.add_listener(first)
    emitter.add_listener(second)
    emitter.add_listener(first)
    assert len(emitter) == 2

    asyncio.run(emitter.emit(GuidanceEvent.GUIDANCE_STARTED, {"n": 1}))
    assert calls == [("first", 1), ("second", 1)]


def test_failing_listener_does_not_block_others():
    messages = []
    emitter = EventEmitter("test", quiet_logger())
    emitter.logger.callback = lambda message, data: messages.append((message, data))

    def broken(event, data):
        raise RuntimeError("boom")

    recorder = Recorder()
    emitter.add_listener(broken)
    emitter.add_listener(recorder)

    asyncio.run(emitter.emit(GuidanceEvent.GUIDANCE_STOPPED))
    assert recorder.names == [GuidanceEvent.GUIDANCE_STOPPED]
    assert messages[0][0] == "test listener error"
    assert "boom" in messages[0][1]["error"]


def test_listener_may_unsubscribe_during_delivery():
    emitter = EventEmitter("test", quiet_logger())
    recorder = Recorder()

    def once(event, data):
        emitter.remove_listener(once)

    emitter.add_listener(once)
    emitter.add_listener(recorder)
    asyncio.run(emitter.emit(GuidanceEvent.POSITION_UPDATED))
    asyncio.run(emitter.emit(GuidanceEvent.POSITION_UPDATED))
    assert not emitter.has_listener(once)
    assert len(recorder.events) == 2


def test_each_listener_gets_its_own_payload_copy():
    emitter = EventEmitter("test", quiet_logger())
    seen = []

    def mutate(event, data):
        data["touched"] = True

    emitter.add_listener(mutate)
    emitter.add_listener(lambda event, data: seen.append(dict(data)))
    asyncio.run(emitter.emit(GuidanceEvent.POI_REACHED, {"poi": "x"}))
    assert seen == [{"poi": "x"}]
