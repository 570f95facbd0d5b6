"""Tests covering the websocket signaling client."""

from __future__ import annotations

import asyncio
import json

from fakes import FakeClientSocket, FakeConnector
from peerlink.rtc.channel import SignalingChannel, encode_frame


def frame(event: str, data=None) -> str:
    return encode_frame(event, data)


def test_encode_frame_omits_missing_data() -> None:
    assert json.loads(encode_frame("peer-left")) == {"event": "peer-left"}
    assert json.loads(encode_frame("offer", {"type": "offer", "sdp": "x"}))["data"]["sdp"] == "x"


def test_outbox_survives_until_connected_and_flushes_in_order() -> None:
    async def scenario() -> None:
        socket = FakeClientSocket([frame("welcome", {"channel": "abc"}), frame("ping", {"ts": 1})])
        channel = SignalingChannel("ws://relay/ws", reconnection_attempts=0, connect=FakeConnector([socket]))

        channel.send("offer", {"type": "offer", "sdp": "v=0"})
        channel.send("ice-candidate", {"candidate": "c1"})
        assert channel.pending == 2

        await channel.run()

        events = [json.loads(text)["event"] for text in socket.sent]
        assert events == ["offer", "ice-candidate", "pong"]
        assert channel.pending == 0

    asyncio.run(scenario())


def test_incoming_frames_reach_handlers_in_order() -> None:
    async def scenario() -> None:
        socket = FakeClientSocket(
            [
                frame("welcome", {"channel": "abc"}),
                "not json",
                json.dumps({"data": 1}),
                frame("offer", {"type": "offer", "sdp": "v=0"}),
                frame("ice-candidate", {"candidate": "c1"}),
                frame("ice-candidate", {"candidate": "c2"}),
            ]
        )
        channel = SignalingChannel("ws://relay/ws", reconnection_attempts=0, connect=FakeConnector([socket]))
        seen = []
        ids = []

        async def record(data) -> None:
            seen.append(data)

        async def on_connect(_) -> None:
            seen.append("connect")

        async def on_disconnect(_) -> None:
            seen.append("disconnect")

        async def on_offer(data) -> None:
            ids.append(channel.channel_id)
            await record(data)

        channel.on("connect", on_connect)
        channel.on("disconnect", on_disconnect)
        channel.on("offer", on_offer)
        channel.on("ice-candidate", record)

        await channel.run()

        assert seen == [
            "connect",
            {"type": "offer", "sdp": "v=0"},
            {"candidate": "c1"},
            {"candidate": "c2"},
            "disconnect",
        ]
        assert ids == ["abc"]
        assert channel.connected is False

    asyncio.run(scenario())


def test_failing_handler_does_not_stop_the_channel() -> None:
    async def scenario() -> None:
        socket = FakeClientSocket([frame("answer", {"type": "answer", "sdp": "a"}), frame("answer", {"type": "answer", "sdp": "b"})])
        channel = SignalingChannel("ws://relay/ws", reconnection_attempts=0, connect=FakeConnector([socket]))
        calls = []

        async def explode(data) -> None:
            calls.append(data["sdp"])
            raise RuntimeError("handler bug")

        channel.on("answer", explode)
        await channel.run()

        assert calls == ["a", "b"]

    asyncio.run(scenario())


def test_reconnects_until_attempts_are_exhausted() -> None:
    async def scenario() -> None:
        socket = FakeClientSocket([])
        connector = FakeConnector([OSError("refused"), OSError("refused"), socket])
        channel = SignalingChannel(
            "ws://relay/ws",
            reconnection_attempts=3,
            reconnection_delay=0,
            connect=connector,
        )
        connects = []

        async def on_connect(_) -> None:
            connects.append(1)

        channel.on("connect", on_connect)
        await channel.run()

        # two failures, one session, then three failures after it dropped
        assert len(connector.calls) == 6
        assert connects == [1]

    asyncio.run(scenario())


def test_outbox_is_bounded() -> None:
    channel = SignalingChannel("ws://relay/ws", outbox_size=2)

    assert channel.send("ice-candidate", {"candidate": "c1"})
    assert channel.send("ice-candidate", {"candidate": "c2"})
    assert channel.send("ice-candidate", {"candidate": "c3"}) is False
    assert channel.dropped == 1
    assert channel.pending == 2


def test_close_stops_run_and_rejects_sends() -> None:
    async def scenario() -> None:
        channel = SignalingChannel("ws://relay/ws", connect=FakeConnector([]))
        await channel.close()
        await channel.run()

        assert channel.send("offer", {"type": "offer", "sdp": "v=0"}) is False

    asyncio.run(scenario())


class StalledSocket(FakeClientSocket):
    """Accepts frames but never finishes sending them."""

    async def send(self, text: str) -> None:
        await asyncio.Event().wait()


def test_frame_stuck_on_a_dropped_connection_is_sent_after_reconnect() -> None:
    async def scenario() -> None:
        first = StalledSocket([])
        second = FakeClientSocket([frame("answer", {"type": "answer", "sdp": str(i)}) for i in range(5)])
        channel = SignalingChannel(
            "ws://relay/ws",
            reconnection_attempts=1,
            reconnection_delay=0,
            connect=FakeConnector([first, second]),
        )

        channel.send("offer", {"type": "offer", "sdp": "v=0"})
        await channel.run()

        assert first.sent == []
        assert [json.loads(text)["event"] for text in second.sent] == ["offer"]
        assert channel.pending == 0

    asyncio.run(scenario())
