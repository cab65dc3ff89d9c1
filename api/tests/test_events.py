from app.services import events as ev


def test_emit_records_history_and_calls_listeners():
    bus = ev.EventBus(keep_history=True)
    seen = []
    bus.add_listener(seen.append)

    bus.emit(ev.LifecycleEvent(ev.MATCH_REQUESTED, actor_id="a", recipient_id="b", entity_id="m1"))

    assert bus.kinds() == [ev.MATCH_REQUESTED]
    assert seen[0].recipient_id == "b"


def test_failing_listener_does_not_block_the_others():
    bus = ev.EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("push backend down")

    bus.add_listener(broken)
    bus.add_listener(seen.append)
    bus.emit(ev.LifecycleEvent(ev.MESSAGE_SENT, actor_id="a", recipient_id="b"))

    assert [e.kind for e in seen] == [ev.MESSAGE_SENT]
    assert bus.history == []
