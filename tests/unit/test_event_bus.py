import threading
import pytest
from convwatch.infrastructure.event_bus import EventBus
from convwatch.domain.events import Event, JobEvent, JobStarted
from convwatch.domain.models import Job

class MockEvent(Event):
    message: str

class ChildEvent(MockEvent):
    pass

def test_event_bus_subscribe_publish():
    bus = EventBus()
    received_events = []

    bus.subscribe(MockEvent, received_events.append)
    bus.publish(MockEvent(message="hello"))

    assert len(received_events) == 1
    assert received_events[0].message == "hello"

def test_event_bus_multiple_subscribers():
    bus = EventBus()
    results = {"a": False, "b": False}

    bus.subscribe(MockEvent, lambda e: results.update({"a": True}))
    bus.subscribe(MockEvent, lambda e: results.update({"b": True}))

    bus.publish(MockEvent(message="test"))

    assert results["a"] is True
    assert results["b"] is True

def test_event_bus_decorator_subscribe():
    bus = EventBus()
    received = []

    @bus.subscribe(MockEvent)
    def on_event(event: MockEvent):
        received.append(event)

    bus.publish(MockEvent(message="decorator"))
    assert len(received) == 1
    assert received[0].message == "decorator"

def test_event_bus_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(MockEvent, received.append)
    bus.unsubscribe(MockEvent, received.append)
    bus.unsubscribe(MockEvent, received.append)  # second call is a no-op

    bus.publish(MockEvent(message="ignored"))
    assert received == []

def test_event_bus_base_class_subscribers_receive_subclasses():
    bus = EventBus()
    base, child = [], []
    bus.subscribe(MockEvent, base.append)
    bus.subscribe(ChildEvent, child.append)

    bus.publish(ChildEvent(message="x"))
    bus.publish(MockEvent(message="y"))

    assert [e.message for e in base] == ["x", "y"]
    assert [e.message for e in child] == ["x"]

def test_event_bus_job_event_keeps_job_identity():
    bus = EventBus()
    received = []
    bus.subscribe(JobEvent, received.append)

    job = Job(input_path="a.mp4")
    bus.publish(JobStarted(job=job))

    assert received[0].job is job

def test_event_bus_publish_from_other_thread():
    bus = EventBus()
    seen = []
    bus.subscribe(MockEvent, lambda e: seen.append(threading.current_thread().name))

    worker = threading.Thread(target=lambda: bus.publish(MockEvent(message="t")), name="worker")
    worker.start()
    worker.join()

    assert seen == ["worker"]

def test_event_bus_callback_may_subscribe_without_deadlock():
    bus = EventBus()
    late = []

    def subscribe_more(event):
        bus.subscribe(MockEvent, late.append)

    bus.subscribe(MockEvent, subscribe_more)
    bus.publish(MockEvent(message="first"))
    bus.publish(MockEvent(message="second"))

    assert [e.message for e in late] == ["second"]
