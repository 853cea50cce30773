"""
Step definitions for the Change Bus feature.

Verifies concurrent fan-out, handler isolation and subscription management.
"""
import asyncio
import logging
import threading

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from kaia_context.kernel.bus import ChangeBus
from kaia_context.kernel.schema import ChangeEvent, ChangeKind

# Load scenarios from feature file
scenarios("../features/change_bus.feature")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_context():
    """Shared context for passing data between steps."""
    return {
        "seen": [],
        "async_seen": [],
        "finished": [],
        "error": None,
    }


def make_event(kind: str, entity_id: str) -> ChangeEvent:
    return ChangeEvent(
        kind=ChangeKind(kind),
        entity_kind="TASK",
        entity_id=entity_id,
        owner_id="user-1",
        payload={"title": "Write report"},
    )


# =============================================================================
# Given Steps
# =============================================================================


@given("a change bus")
def change_bus(test_context):
    test_context["bus"] = ChangeBus()


@given(parsers.parse("a handler on {kind} that raises"))
def failing_handler(test_context, kind: str):
    def explode(event):
        raise RuntimeError(f"handler exploded on {event.entity_id}")

    test_context["bus"].subscribe(ChangeKind(kind), explode)


@given(parsers.parse("a recording handler on {kind}"))
def recording_handler(test_context, kind: str):
    def record(event):
        test_context["seen"].append(event.entity_id)

    test_context["recorder"] = record
    test_context["subscription"] = test_context["bus"].subscribe(ChangeKind(kind), record)


@given(parsers.parse("an async recording handler on {kind}"))
def async_recording_handler(test_context, kind: str):
    async def record(event):
        await asyncio.sleep(0)
        test_context["async_seen"].append(event.entity_id)

    test_context["bus"].subscribe(ChangeKind(kind), record)


@given(parsers.parse("the same recording handler is subscribed to {kind} again"))
def resubscribe_recorder(test_context, kind: str):
    test_context["bus"].subscribe(ChangeKind(kind), test_context["recorder"])


@given(parsers.parse("two async handlers on {kind} that each wait for the other"))
def rendezvous_handlers(test_context, kind: str):
    # Events are created on first use so they bind to the publishing loop
    def arrived(name):
        return test_context.setdefault(name, asyncio.Event())

    def make_handler(mine, theirs):
        async def handler(event):
            arrived(mine).set()
            await arrived(theirs).wait()
            test_context["finished"].append(mine)

        return handler

    bus = test_context["bus"]
    bus.subscribe(ChangeKind(kind), make_handler("left", "right"))
    bus.subscribe(ChangeKind(kind), make_handler("right", "left"))


@given(parsers.parse("a slow async handler on {kind} held by a gate"))
def gated_handler(test_context, kind: str):
    async def handler(event):
        await test_context["gate"].wait()
        test_context["finished"].append(event.entity_id)

    test_context["bus"].subscribe(ChangeKind(kind), handler)


@given(parsers.parse("a sync handler on {kind} that blocks until its sibling signals"))
def blocking_sync_handler(test_context, kind: str):
    signal = threading.Event()
    test_context["signal"] = signal

    def handler(event):
        test_context["released"] = signal.wait(timeout=2)
        test_context["finished"].append("sync")

    test_context["bus"].subscribe(ChangeKind(kind), handler)


@given(parsers.parse("an async handler on {kind} that signals its sibling"))
def signalling_handler(test_context, kind: str):
    async def handler(event):
        await asyncio.sleep(0.01)
        test_context["signal"].set()
        test_context["finished"].append("async")

    test_context["bus"].subscribe(ChangeKind(kind), handler)


# =============================================================================
# When Steps
# =============================================================================


@when(parsers.re(r'an? (?P<kind>[A-Z]+) event for "(?P<entity_id>[^"]+)" is published'))
def publish_event(test_context, caplog, kind: str, entity_id: str):
    event = make_event(kind, entity_id)
    with caplog.at_level(logging.ERROR, logger="kaia_context.kernel.bus"):
        try:
            asyncio.run(test_context["bus"].publish(event))
        except Exception as exc:  # surfaced by the Then step
            test_context["error"] = exc


@when(
    parsers.re(
        r'an? (?P<kind>[A-Z]+) event for "(?P<entity_id>[^"]+)" is published '
        r"with a (?P<seconds>\d+) second deadline"
    )
)
def publish_with_deadline(test_context, kind: str, entity_id: str, seconds: str):
    bus = test_context["bus"]
    try:
        asyncio.run(asyncio.wait_for(bus.publish(make_event(kind, entity_id)), int(seconds)))
    except asyncio.TimeoutError as exc:
        test_context["error"] = exc


@when(parsers.re(r'an? (?P<kind>[A-Z]+) event for "(?P<entity_id>[^"]+)" is published in the background'))
def publish_in_background(test_context, kind: str, entity_id: str):
    async def observe():
        test_context["gate"] = asyncio.Event()
        publishing = asyncio.ensure_future(test_context["bus"].publish(make_event(kind, entity_id)))
        for _ in range(5):
            await asyncio.sleep(0)
        test_context["pending_while_closed"] = not publishing.done()
        test_context["gate"].set()
        await asyncio.wait_for(publishing, 1)
        test_context["done_after_open"] = publishing.done()

    asyncio.run(observe())


@when(parsers.parse("the recording handler is unsubscribed from {kind} twice"))
def unsubscribe_twice(test_context, kind: str):
    bus = test_context["bus"]
    bus.unsubscribe(ChangeKind(kind), test_context["recorder"])
    bus.unsubscribe(ChangeKind(kind), test_context["recorder"])


@when("the subscription is cancelled")
def cancel_subscription(test_context):
    test_context["subscription"].cancel()


@when("the bus is cleared")
def clear_bus(test_context):
    test_context["bus"].clear()


# =============================================================================
# Then Steps
# =============================================================================


@then("publishing completes without error")
def no_publish_error(test_context):
    assert test_context["error"] is None


@then(parsers.parse('the recording handler saw "{entity_id}" exactly once'))
def recorder_saw_once(test_context, entity_id: str):
    assert test_context["seen"] == [entity_id]


@then(parsers.parse('the async recording handler saw "{entity_id}" exactly once'))
def async_recorder_saw_once(test_context, entity_id: str):
    assert test_context["async_seen"] == [entity_id]


@then("the recording handler saw nothing")
def recorder_saw_nothing(test_context):
    assert test_context["seen"] == []


@then("the handler failure was logged")
def failure_logged(caplog):
    failures = [r for r in caplog.records if r.name == "kaia_context.kernel.bus"]
    assert len(failures) == 1
    assert failures[0].exc_info is not None


@then(parsers.parse("{kind} has {count:d} handlers"))
def handler_count(test_context, kind: str, count: int):
    assert test_context["bus"].handler_count(ChangeKind(kind)) == count


@then("the bus lists no event kinds")
def no_event_kinds(test_context):
    assert test_context["bus"].list_event_kinds() == []


@then(parsers.parse('the bus lists event kinds "{kinds}"'))
def lists_event_kinds(test_context, kinds: str):
    expected = sorted(k.strip() for k in kinds.split(","))
    assert sorted(test_context["bus"].list_event_kinds()) == expected


@then("both waiting handlers finished")
def both_finished(test_context):
    assert sorted(test_context["finished"]) == ["left", "right"]


@then("publishing is still pending while the gate is closed")
def pending_while_closed(test_context):
    assert test_context["pending_while_closed"] is True


@then("publishing completes once the gate opens")
def done_after_open(test_context):
    assert test_context["done_after_open"] is True
    assert test_context["finished"] == ["task-6"]


@then("the blocking handler was released by its sibling")
def released_by_sibling(test_context):
    assert test_context["released"] is True
    assert sorted(test_context["finished"]) == ["async", "sync"]
