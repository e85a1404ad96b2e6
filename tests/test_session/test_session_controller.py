import asyncio
import os

import pytest

from agent_relay.exceptions import LaunchError, SessionNotActiveError
from agent_relay.models import SessionMode, Transport
from agent_relay.session import SessionController, SessionRegistry, SessionState


@pytest.mark.asyncio
async def test_interactive_submissions_share_one_process(fake_launch, make_config) -> None:
    controller = SessionController("panel-a")
    config = make_config(session_mode=SessionMode.INTERACTIVE)

    first = await controller.submit("hello", config)
    second = await controller.submit("and again", config)

    assert len(fake_launch.handles) == 1
    assert fake_launch.handles[0].writes == ["hello\n", "and again\n"]
    assert second is first
    assert controller.state == SessionState.RUNNING_INTERACTIVE
    await controller.close()


@pytest.mark.asyncio
async def test_terminal_submissions_are_forwarded_with_enter(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(transport=Transport.TERMINAL, session_mode=SessionMode.TERMINAL)

    await controller.submit("", config)
    await controller.submit("ls -la\n", config)

    assert len(fake_launch.handles) == 1
    assert fake_launch.handles[0].writes == ["ls -la\r"]
    assert controller.state == SessionState.RUNNING_TERMINAL
    await controller.close()


@pytest.mark.asyncio
async def test_one_shot_submissions_launch_separate_processes(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config()

    await controller.submit("one", config)
    await controller.submit("two", config)

    assert len(fake_launch.handles) == 2
    assert controller.state == SessionState.RUNNING_ONE_SHOT
    assert not controller.is_active
    await controller.close()
    assert controller.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_close_returns_controller_to_idle_and_relaunches(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(session_mode=SessionMode.INTERACTIVE)
    closes: list[tuple] = []

    invocation = await controller.submit("start", config, on_close=lambda c, e: closes.append((c, e)))
    fake_launch.handles[0].exit(0)
    await asyncio.wait_for(invocation.wait(), timeout=1.0)

    assert controller.state == SessionState.IDLE
    assert closes == [(0, None)]

    await controller.submit("fresh", config)
    assert len(fake_launch.handles) == 2
    await controller.close()


@pytest.mark.asyncio
async def test_cancel_interrupts_without_killing(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(session_mode=SessionMode.INTERACTIVE)
    await controller.submit("start", config)

    assert controller.cancel() is True
    handle = fake_launch.handles[0]
    assert handle.interrupts == 1
    assert not handle.killed
    assert controller.is_active
    await controller.close()


@pytest.mark.asyncio
async def test_cancel_when_idle_is_noop() -> None:
    assert SessionController().cancel() is False


@pytest.mark.asyncio
async def test_write_requires_active_session() -> None:
    controller = SessionController("panel-x")
    with pytest.raises(SessionNotActiveError):
        await controller.write("y\n")


@pytest.mark.asyncio
async def test_failed_forward_closes_tracked_invocation_once(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(session_mode=SessionMode.INTERACTIVE, argument_template="-p {prompt}")
    closes: list[tuple] = []
    invocation = await controller.submit("start", config, on_close=lambda c, e: closes.append((c, e)))

    fake_launch.handles[0].fail_writes = True
    assert await controller.write("y\n") is False
    await asyncio.wait_for(invocation.wait(), timeout=1.0)

    assert len(closes) == 1
    assert controller.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_registry_keeps_panels_independent(fake_launch, make_config) -> None:
    registry = SessionRegistry()
    left = await registry.get_or_create("left")
    right = await registry.get_or_create("right")

    assert left is not right
    assert await registry.get_or_create("left") is left
    assert registry.size == 2

    config = make_config(session_mode=SessionMode.INTERACTIVE)
    await left.submit("for left", config)
    await right.submit("for right", config)
    assert len(fake_launch.handles) == 2
    assert fake_launch.handles[0].writes == ["for left\n"]
    assert fake_launch.handles[1].writes == ["for right\n"]

    assert await registry.close("left") is True
    assert fake_launch.handles[0].killed
    assert not fake_launch.handles[1].killed
    assert registry.get("left") is None
    assert await registry.close("left") is False

    await registry.close_all()
    assert fake_launch.handles[1].killed
    assert registry.size == 0


@pytest.mark.asyncio
@pytest.mark.skipif(os.name != "posix", reason="uses cat and POSIX signals")
async def test_interactive_cat_session_end_to_end(make_config) -> None:
    controller = SessionController()
    config = make_config(executable="cat", session_mode=SessionMode.INTERACTIVE)
    received: list[str] = []

    invocation = await controller.submit("first", config, on_chunk=received.append)
    await controller.submit("second", config)

    for _ in range(100):
        if "second" in "".join(received):
            break
        await asyncio.sleep(0.02)
    assert "".join(received) == "first\nsecond\n"
    assert controller.launch_count == 1

    assert controller.cancel() is True
    event = await asyncio.wait_for(invocation.wait(), timeout=5.0)
    assert event.exit_code != 0
    assert controller.state == SessionState.IDLE


@pytest.mark.asyncio
async def test_submission_during_launch_is_forwarded_after_start(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(session_mode=SessionMode.INTERACTIVE)
    fake_launch.gate = asyncio.Event()

    first = asyncio.create_task(controller.submit("first", config))
    second = asyncio.create_task(controller.submit("second", config))
    await asyncio.sleep(0.01)
    assert fake_launch.handles == []

    fake_launch.gate.set()
    launched, forwarded = await asyncio.gather(first, second)

    assert forwarded is launched
    assert len(fake_launch.handles) == 1
    assert fake_launch.handles[0].writes == ["first\n", "second\n"]
    await controller.close()


@pytest.mark.asyncio
async def test_submission_during_failed_launch_sees_launch_error(fake_launch, make_config) -> None:
    controller = SessionController()
    config = make_config(session_mode=SessionMode.INTERACTIVE)
    fake_launch.gate = asyncio.Event()
    fake_launch.fail_launch = LaunchError("agent not found", executable="agent")
    closes: list[tuple] = []

    first = asyncio.create_task(controller.submit("first", config, on_close=lambda c, e: closes.append((c, e))))
    second = asyncio.create_task(controller.submit("second", config))
    await asyncio.sleep(0.01)
    fake_launch.gate.set()
    launched, forwarded = await asyncio.gather(first, second)

    assert forwarded is launched
    assert isinstance(launched.close_event.error, LaunchError)
    assert len(closes) == 1
    assert controller.state == SessionState.IDLE


@pytest.mark.asyncio
@pytest.mark.skipif(os.name != "posix", reason="uses cat")
async def test_concurrent_submissions_reach_one_cat_process(make_config) -> None:
    controller = SessionController()
    config = make_config(executable="cat", session_mode=SessionMode.INTERACTIVE)

    invocation, again = await asyncio.gather(
        controller.submit("first", config),
        controller.submit("second", config),
    )

    for _ in range(100):
        if "second" in invocation.text:
            break
        await asyncio.sleep(0.02)
    assert again is invocation
    assert invocation.text == "first\nsecond\n"
    assert controller.launch_count == 1
    await controller.close()
