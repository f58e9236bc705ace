import asyncio

import pytest

from bytetunnel.errors import ReadError, WriteError
from bytetunnel.relay.pump import PumpExit, StreamPump
from bytetunnel.relay.window import Trigger
from bytetunnel.transports.mock import MockConnection, MockSink

REPORT = Trigger(b"\nREPORT ", ord("/"))
PROPFIND = Trigger(b"\nPROPFIND ", ord("/"))


async def pump_chunks(chunks, triggers=(), secondary=None):
    source = MockConnection(chunks, eof=True)
    primary = MockSink()
    pump = StreamPump(source, primary, secondary=secondary, triggers=triggers)
    reason = await asyncio.wait_for(pump.run(), timeout=5)
    return pump, reason, bytes(primary.written)


@pytest.mark.asyncio
async def test_identity_relay_without_triggers():
    data = bytes(range(256)) * 4 + b"\nREPORT X"
    chunks = [data[i:i + 37] for i in range(0, len(data), 37)]

    pump, reason, out = await pump_chunks(chunks)

    assert reason is PumpExit.EOF
    assert out == data
    assert not pump.correction_enabled
    assert pump.get_stats()["corrections"] == 0


@pytest.mark.asyncio
async def test_report_missing_slash_is_inserted():
    pump, _, out = await pump_chunks([b"xx\nREPORT Xrest"], triggers=[REPORT])
    assert out == b"xx\nREPORT /Xrest"
    assert pump.get_stats()["corrections"] == 1


@pytest.mark.asyncio
async def test_report_with_slash_is_unchanged():
    pump, _, out = await pump_chunks([b"xx\nREPORT /abc"], triggers=[REPORT])
    assert out == b"xx\nREPORT /abc"
    assert pump.get_stats()["corrections"] == 0


@pytest.mark.asyncio
async def test_trigger_split_across_reads():
    chunks = [b"GET / HTTP/1.1\r\n\nPROP", b"FI", b"ND ", b"dav/x"]
    _, _, out = await pump_chunks(chunks, triggers=[REPORT, PROPFIND])
    assert out == b"GET / HTTP/1.1\r\n\nPROPFIND /dav/x"


@pytest.mark.asyncio
async def test_trigger_at_end_of_stream_injects_nothing():
    _, reason, out = await pump_chunks([b"abc\nREPORT "], triggers=[REPORT])
    assert reason is PumpExit.EOF
    assert out == b"abc\nREPORT "


@pytest.mark.asyncio
async def test_injected_byte_is_not_pushed_into_window():
    # After "aa" + injected "/" + "a", the window is "aa" again
    _, _, out = await pump_chunks([b"aaaa"], triggers=[Trigger(b"aa", ord("/"))])
    assert out == b"aa/a/a"


@pytest.mark.asyncio
async def test_at_most_one_injection_first_registered_wins():
    first = Trigger(b"ab", ord("X"))
    second = Trigger(b"ab", ord("Y"))

    pump, _, out = await pump_chunks([b"abZ"], triggers=[first, second])
    assert out == b"abXZ"
    assert pump.get_stats()["corrections"] == 1

    _, _, out = await pump_chunks([b"abX"], triggers=[first, second])
    assert out == b"abX"


@pytest.mark.asyncio
async def test_secondary_sink_sees_same_bytes_including_corrections():
    tee = MockSink()
    _, _, out = await pump_chunks([b"1\nREPORT x", b"2\nREPORT /y"], triggers=[REPORT], secondary=tee)

    assert out == b"1\nREPORT /x2\nREPORT /y"
    assert bytes(tee.written) == out
    assert tee.closes == 1


@pytest.mark.asyncio
async def test_read_error_tears_down():
    source = MockConnection([b"abc"])
    source.feed_error(ConnectionResetError("reset by peer"))
    primary = MockSink()
    tee = MockSink()
    pump = StreamPump(source, primary, secondary=tee, name="c2u")

    reason = await pump.run()

    assert reason is PumpExit.READ_ERROR
    assert isinstance(pump.error, ReadError)
    assert isinstance(pump.error.cause, ConnectionResetError)
    assert bytes(primary.written) == b"abc"
    assert source.closes == 1
    assert primary.closes == 1
    assert tee.closes == 1
    assert not pump.running


@pytest.mark.asyncio
async def test_write_error_tears_down_and_close_failures_do_not_stop_teardown():
    source = MockConnection([b"abc", b"def"])
    primary = MockSink(
        write_error=BrokenPipeError("gone"),
        close_error=OSError("close failed"),
    )
    tee = MockSink()
    pump = StreamPump(source, primary, secondary=tee)

    reason = await pump.run()

    assert reason is PumpExit.WRITE_ERROR
    assert isinstance(pump.error, WriteError)
    assert source.closes == 1
    assert primary.closes == 1
    assert tee.closes == 1
    # Nothing reached the secondary sink: primary is written first
    assert tee.written == b""


@pytest.mark.asyncio
async def test_secondary_write_failure_ends_pump():
    source = MockConnection([b"abc"], eof=True)
    primary = MockSink()
    tee = MockSink(write_error=OSError("disk full"))
    pump = StreamPump(source, primary, secondary=tee)

    assert await pump.run() is PumpExit.WRITE_ERROR
    assert bytes(primary.written) == b"abc"


def test_cancelled_pump_closes_resources():
    async def run():
        source = MockConnection()
        primary = MockSink()
        pump = StreamPump(source, primary)
        task = asyncio.create_task(pump.run())
        await asyncio.sleep(0.01)
        assert pump.running
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return pump, source, primary

    pump, source, primary = asyncio.run(asyncio.wait_for(run(), timeout=5))
    assert pump.exit_reason is PumpExit.CANCELLED
    assert source.closes == 1
    assert primary.closes == 1


def test_process_is_stateful_across_calls():
    pump = StreamPump(MockConnection(), MockSink(), triggers=[REPORT])
    assert pump.process(b"\nREP") == b"\nREP"
    assert pump.process(b"ORT ") == b"ORT "
    assert pump.process(b"x") == b"/x"
    assert pump.process(b"y") == b"y"
