import asyncio

from applyflow.core.events import EventBus
from applyflow.types import BatchEvent, BatchLog


def _log(session_id: str, message: str) -> BatchEvent:
    return BatchEvent(type="log", session_id=session_id, log=BatchLog(message=message))


def test_events_arrive_in_publish_order_per_session() -> None:
    async def scenario() -> tuple[list[str], int]:
        bus = EventBus()
        received: list[str] = []
        ready = asyncio.Event()

        async def consume() -> None:
            stream = bus.subscribe("a")
            first = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0)
            ready.set()
            received.append((await first).log.message)
            async for event in stream:
                received.append(event.log.message)
                if len(received) == 3:
                    break
            await stream.aclose()

        task = asyncio.create_task(consume())
        await ready.wait()
        bus.publish(_log("a", "one"))
        bus.publish(_log("b", "other session"))
        bus.publish(_log("a", "two"))
        bus.publish(_log("a", "three"))
        await task
        return received, bus.subscriber_count("a")

    received, remaining = asyncio.run(scenario())

    assert received == ["one", "two", "three"]
    assert remaining == 0


def test_publish_without_subscribers_is_a_no_op() -> None:
    bus = EventBus()
    bus.publish(_log("nobody", "hello"))
    assert bus.subscriber_count("nobody") == 0
