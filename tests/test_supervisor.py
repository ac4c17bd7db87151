"""Tests for connection and channel supervision."""

import asyncio
import logging

import pytest

from mqplay.client import MQClient
from mqplay.exceptions import ConnectionLostError
from mqplay.supervisor import ErrorSink, LinkState, SupervisedHandle


class TestErrorSink:
    """Test the error funnel."""

    @pytest.mark.asyncio
    async def test_logs_reported_errors(self, caplog):
        sink = ErrorSink()
        task = asyncio.create_task(sink.run())

        with caplog.at_level(logging.ERROR, logger="mqplay.supervisor"):
            await sink.report(RuntimeError("boom"))
            await asyncio.wait_for(sink.join(), 1)

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert "caught an error: boom" in caplog.text


class TestSupervisedHandle:
    """Test the handle cell."""

    def test_transitions(self):
        handle = SupervisedHandle()
        assert handle.state == LinkState.ABSENT
        assert handle.get() is None

        handle.establishing()
        assert handle.state == LinkState.ESTABLISHING

        handle.set("conn")
        assert handle.state == LinkState.ESTABLISHED
        assert handle.get() == "conn"

        handle.clear()
        assert handle.state == LinkState.ABSENT
        assert handle.get() is None


class TestSupervision:
    """Test reconnect behaviour through the client."""

    @pytest.mark.asyncio
    async def test_startup_reaches_established(self, test_config, fake_broker):
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)

            assert client.connection_state == LinkState.ESTABLISHED
            assert client.channel_state == LinkState.ESTABLISHED
            assert fake_broker.dials == [test_config.amqp_url]

    @pytest.mark.asyncio
    async def test_dial_failures_are_retried(self, test_config, fake_broker, caplog):
        fake_broker.dial_failures = 3

        with caplog.at_level(logging.ERROR, logger="mqplay.supervisor"):
            async with MQClient(test_config, broker=fake_broker) as client:
                await asyncio.wait_for(client.ready(), 2)
                await asyncio.wait_for(client.sink.join(), 1)

        assert len(fake_broker.dials) == 4
        assert caplog.text.count("dial refused") >= 3

    @pytest.mark.asyncio
    async def test_channel_waits_for_connection(self, test_config, fake_broker):
        fake_broker.dial_failures = 10_000

        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.sleep(0.05)

            assert client.connection is None
            assert client.channel is None
            assert client.channel_state == LinkState.ABSENT
            assert fake_broker.channels == []

    @pytest.mark.asyncio
    async def test_channel_open_failure_is_retried(self, test_config, fake_broker):
        fake_broker.channel_failures = 2

        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)

            assert len(fake_broker.connections) == 1
            assert len(fake_broker.channels) == 1

    @pytest.mark.asyncio
    async def test_connection_closure_reconnects(self, test_config, fake_broker, eventually):
        """Test a lost connection is redialled and a new channel opened."""
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            first = fake_broker.connection

            first.kill(RuntimeError("connection reset"))
            await eventually(
                lambda: len(fake_broker.connections) == 2 and client.channel is not None
            )

            assert client.connection is fake_broker.connections[1]
            assert client.channel.connection is fake_broker.connections[1]

    @pytest.mark.asyncio
    async def test_closure_reported_to_sink(self, test_config, fake_broker, eventually):
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            reported = []
            original = client.sink.report

            async def capture(error):
                reported.append(error)
                await original(error)

            client.sink.report = capture
            fake_broker.connection.kill(RuntimeError("reset"))
            await eventually(lambda: len(reported) >= 2)

        assert all(isinstance(e, ConnectionLostError) for e in reported[:2])
        assert {str(e).split(" ")[0] for e in reported[:2]} == {"connection", "channel"}

    @pytest.mark.asyncio
    async def test_dead_handles_cleared_before_reporting(self, test_config, fake_broker, eventually):
        """Test a closed link is no longer visible when its closure is reported."""
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            dead_connection, dead_channel = client.connection, client.channel
            seen = []
            original = client.sink.report

            async def capture(error):
                link = str(error).split(" ")[0]
                seen.append((link, client.connection if link == "connection" else client.channel))
                await original(error)

            client.sink.report = capture
            dead_connection.kill(RuntimeError("reset"))
            await eventually(lambda: len(seen) >= 2)

        assert {link for link, _ in seen[:2]} == {"connection", "channel"}
        for link, handle in seen[:2]:
            assert handle is not (dead_connection if link == "connection" else dead_channel)

    @pytest.mark.asyncio
    async def test_channel_closure_replays_exchanges(self, test_config, fake_broker, eventually):
        """Test every registered exchange is declared again on the new channel."""
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            await client.connect_to_exchange("alarm", "fanout")
            await client.connect_to_exchange("state", "fanout")
            first = client.channel

            first.kill(RuntimeError("channel error"))
            await eventually(lambda: client.channel is not None and client.channel is not first)

            redeclared = {e[0] for e in client.channel.declared_exchanges}
            assert redeclared == {"alarm", "state"}
            assert len(fake_broker.connections) == 1

    @pytest.mark.asyncio
    async def test_replay_after_every_reconnect(self, test_config, fake_broker, eventually):
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            await client.connect_to_exchange("alarm", "fanout")

            for _ in range(3):
                previous = client.channel
                fake_broker.connection.kill()
                await eventually(
                    lambda: client.channel is not None and client.channel is not previous
                )
                assert [e[0] for e in client.channel.declared_exchanges] == ["alarm"]

    @pytest.mark.asyncio
    async def test_ready_fires_once(self, test_config, fake_broker, eventually):
        """Test readiness is signalled on the first channel only."""
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)

            first = client.channel
            first.kill()
            await eventually(lambda: client.channel is not None and client.channel is not first)

            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(client.ready(), 0.05)

    @pytest.mark.asyncio
    async def test_hooks_failures_reported(self, test_config, fake_broker, eventually):
        async with MQClient(test_config, broker=fake_broker) as client:
            await asyncio.wait_for(client.ready(), 1)
            calls = []

            async def hook(channel):
                calls.append(channel)
                raise RuntimeError("hook failed")

            client.on_channel_open(hook)
            first = client.channel
            first.kill()
            await eventually(lambda: len(calls) == 1)

            assert calls[0] is client.channel

    @pytest.mark.asyncio
    async def test_stop_cancels_and_closes(self, test_config, fake_broker):
        client = MQClient(test_config, broker=fake_broker)
        await client.start()
        await asyncio.wait_for(client.ready(), 1)
        channel, connection = fake_broker.channel, fake_broker.connection

        await client.stop()

        assert not client.running
        assert channel.is_closed
        assert connection.closed.done()
        assert client.connection is None
        assert client.channel is None
