import asyncio

import pytest

from bytetunnel.errors import ConnectError
from bytetunnel.relay.pump import PumpExit
from bytetunnel.relay.session import DirectionOptions, SessionState, TunnelSession
from bytetunnel.relay.window import Trigger
from bytetunnel.transports.capture import CaptureSink
from bytetunnel.transports.mock import MockConnection, MockConnector, MockSink


@pytest.mark.asyncio
async def test_connect_failure_closes_inbound_once_and_starts_no_pump():
    inbound = MockConnection([b"hello"], address="client")
    tee = MockSink()
    connector = MockConnector(fail=True)
    session = TunnelSession(
        inbound,
        connector,
        session_id=1,
        client_to_upstream=DirectionOptions(tee=tee),
    )

    with pytest.raises(ConnectError) as exc_info:
        await session.run()

    assert exc_info.value.host == "mock-upstream"
    assert connector.attempts == 1
    assert session.pumps == []
    assert session.state is SessionState.CLOSED
    assert inbound.close_calls == 1
    assert inbound.closes == 1
    assert tee.closes == 1

    # Later close() is a no-op
    await session.close()
    assert inbound.close_calls == 1


@pytest.mark.asyncio
async def test_session_relays_both_directions_and_closes_each_connection_once():
    inbound = MockConnection([b"ping"], address="client")
    upstream = MockConnection([b"pong"], eof=True, address="upstream")
    session = TunnelSession(inbound, MockConnector([upstream]), session_id=7)

    await asyncio.wait_for(session.run(), timeout=5)

    assert bytes(upstream.written) == b"ping"
    assert bytes(inbound.written) == b"pong"
    assert session.state is SessionState.CLOSED
    assert all(not p.running for p in session.pumps)
    # Both pumps close both connections; only the first close takes effect
    assert inbound.close_calls >= 2
    assert upstream.close_calls >= 2
    assert inbound.closes == 1
    assert upstream.closes == 1

    stats = session.get_stats()
    assert stats["session_id"] == 7
    assert stats["state"] == "closed"
    assert [p["bytes_read"] for p in stats["pumps"]] == [4, 4]


@pytest.mark.asyncio
async def test_client_eof_ends_both_directions():
    inbound = MockConnection([b"bye"], eof=True, address="client")
    upstream = MockConnection(address="upstream")
    session = TunnelSession(inbound, MockConnector([upstream]))

    await asyncio.wait_for(session.run(), timeout=5)

    c2u, u2c = session.pumps
    assert c2u.exit_reason is PumpExit.EOF
    # Closing the upstream from the other pump surfaces as end-of-stream
    assert u2c.exit_reason is PumpExit.EOF
    assert bytes(upstream.written) == b"bye"


@pytest.mark.asyncio
async def test_triggers_apply_only_to_configured_direction():
    triggers = [Trigger(b"\nPROPFIND ", ord("/")), Trigger(b"\nREPORT ", ord("/"))]
    inbound = MockConnection([b"x\nPROPFIND dav\nREPORT /ok"], address="client")
    upstream = MockConnection([b"echo\nREPORT z"], eof=True, address="upstream")
    session = TunnelSession(
        inbound,
        MockConnector([upstream]),
        client_to_upstream=DirectionOptions(triggers=triggers),
    )

    await asyncio.wait_for(session.run(), timeout=5)

    assert bytes(upstream.written) == b"x\nPROPFIND /dav\nREPORT /ok"
    assert bytes(inbound.written) == b"echo\nREPORT z"


@pytest.mark.asyncio
async def test_capture_tee_per_direction(tmp_path):
    c2u_file = CaptureSink(tmp_path / "c2u.bin")
    u2c_file = CaptureSink(tmp_path / "u2c.bin")
    c2u_file.open()
    u2c_file.open()

    inbound = MockConnection([b"request"], address="client")
    upstream = MockConnection([b"response"], eof=True, address="upstream")
    session = TunnelSession(
        inbound,
        MockConnector([upstream]),
        client_to_upstream=DirectionOptions(tee=c2u_file),
        upstream_to_client=DirectionOptions(tee=u2c_file),
    )

    await asyncio.wait_for(session.run(), timeout=5)

    assert not c2u_file.is_open
    assert not u2c_file.is_open
    assert (tmp_path / "c2u.bin").read_bytes() == b"request"
    assert (tmp_path / "u2c.bin").read_bytes() == b"response"


@pytest.mark.asyncio
async def test_external_close_stops_active_session():
    inbound = MockConnection(address="client")
    upstream = MockConnection(address="upstream")
    session = TunnelSession(inbound, MockConnector([upstream]))

    task = asyncio.create_task(session.run())
    await asyncio.sleep(0.01)
    assert session.state is SessionState.ACTIVE

    await session.close()
    await session.close()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=5)

    assert session.state is SessionState.CLOSED
    assert inbound.closes == 1
    assert upstream.closes == 1


@pytest.mark.asyncio
async def test_close_while_connecting_never_becomes_active():
    inbound = MockConnection(address="client")
    upstream = MockConnection(address="upstream")
    tee = MockSink()
    connector = MockConnector([upstream], hold=True)
    session = TunnelSession(inbound, connector, client_to_upstream=DirectionOptions(tee=tee))

    task = asyncio.create_task(session.run())
    await asyncio.wait_for(connector.connecting.wait(), timeout=5)
    assert session.state is SessionState.CONNECTING

    await session.close()
    assert session.state is SessionState.CLOSED
    assert inbound.closes == 1
    assert tee.closes == 1

    # The upstream connects after the session was closed
    connector.release.set()
    await asyncio.wait_for(task, timeout=5)

    assert session.state is SessionState.CLOSED
    assert session.pumps == []
    assert session.upstream is None
    assert upstream.closes == 1
    assert tee.closes == 1


@pytest.mark.asyncio
async def test_cancel_while_connecting_closes_inbound_and_tees(tmp_path):
    capture = CaptureSink(tmp_path / "c2u.bin")
    capture.open()
    u2c_tee = MockSink()
    inbound = MockConnection(address="client")
    connector = MockConnector([MockConnection(address="upstream")], hold=True)
    session = TunnelSession(
        inbound,
        connector,
        client_to_upstream=DirectionOptions(tee=capture),
        upstream_to_client=DirectionOptions(tee=u2c_tee),
    )

    task = asyncio.create_task(session.run())
    await asyncio.wait_for(connector.connecting.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=5)

    assert session.state is SessionState.CLOSED
    assert session.pumps == []
    assert inbound.closes == 1
    assert not capture.is_open
    assert u2c_tee.closes == 1

    await session.close()
    assert inbound.close_calls == 1
    assert u2c_tee.closes == 1
