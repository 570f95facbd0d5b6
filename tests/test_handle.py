"""Tests covering the per-call connection handle."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeConnection, FakeTrack
from peerlink.rtc.errors import InvalidDescription, ProtocolViolation
from peerlink.rtc.handle import ConnectionHandle, HandleState
from peerlink.rtc.media import LocalMedia
from peerlink.rtc.webrtc import NetworkCandidate, SessionDescription

OFFER = SessionDescription("offer", "v=0 offer")
ANSWER = SessionDescription("answer", "v=0 answer")


def test_local_description_is_set_once() -> None:
    async def scenario() -> None:
        handle = ConnectionHandle(FakeConnection())
        committed = await handle.set_local_description(OFFER)

        assert committed == OFFER
        assert handle.state is HandleState.LOCAL_OFFER_SET
        with pytest.raises(ProtocolViolation):
            await handle.set_local_description(SessionDescription("offer", "v=0 again"))
        assert handle.local_description == OFFER

    asyncio.run(scenario())


def test_remote_description_is_set_once() -> None:
    async def scenario() -> None:
        connection = FakeConnection()
        handle = ConnectionHandle(connection)
        await handle.set_remote_description(OFFER)

        with pytest.raises(ProtocolViolation):
            await handle.set_remote_description(SessionDescription("offer", "v=0 other"))
        assert connection.remote == OFFER
        assert handle.state is HandleState.REMOTE_DESCRIPTION_SET

    asyncio.run(scenario())


def test_answer_requires_remote_offer() -> None:
    async def scenario() -> None:
        handle = ConnectionHandle(FakeConnection())
        with pytest.raises(ProtocolViolation):
            await handle.create_answer()

    asyncio.run(scenario())


def test_engine_failure_on_remote_description_is_wrapped() -> None:
    async def scenario() -> None:
        connection = FakeConnection()
        connection.reject_remote = True
        handle = ConnectionHandle(connection)

        with pytest.raises(InvalidDescription):
            await handle.set_remote_description(ANSWER)
        assert handle.remote_description is None
        assert handle.state is HandleState.NO_DESCRIPTION

    asyncio.run(scenario())


def test_buffered_candidates_flush_in_arrival_order() -> None:
    async def scenario() -> None:
        connection = FakeConnection()
        errors = []
        handle = ConnectionHandle(connection, on_error=errors.append)

        for line in ("c1", "bad", "c2", "c3"):
            assert await handle.add_remote_candidate(NetworkCandidate(line)) is False
        assert [c.candidate for c in handle.pending_candidates] == ["c1", "bad", "c2", "c3"]

        applied = await handle.set_remote_description(OFFER)

        assert applied == 3
        assert [c.candidate for c in connection.applied] == ["c1", "c2", "c3"]
        assert handle.pending_candidates == ()
        assert len(errors) == 1

        assert await handle.add_remote_candidate(NetworkCandidate("c4")) is True
        assert connection.applied[-1].candidate == "c4"

    asyncio.run(scenario())


def test_close_is_idempotent_and_stops_media() -> None:
    async def scenario() -> None:
        connection = FakeConnection()
        handle = ConnectionHandle(connection)
        stops = []
        media = LocalMedia(tracks=[FakeTrack("video")], on_stop=lambda: stops.append(1))
        handle.attach_media(media)
        await handle.add_remote_candidate(NetworkCandidate("c1"))
        connection.fire("track", FakeTrack("video"))

        await handle.close()
        await handle.close()

        assert handle.closed
        assert connection.closed
        assert media.stopped
        assert stops == [1]
        assert handle.pending_candidates == ()
        assert handle.remote_tracks == []
        with pytest.raises(ProtocolViolation):
            await handle.add_remote_candidate(NetworkCandidate("c2"))

    asyncio.run(scenario())


def test_callbacks_stop_after_close() -> None:
    async def scenario() -> None:
        connection = FakeConnection()
        local, states, tracks = [], [], []
        handle = ConnectionHandle(
            connection,
            on_local_candidate=local.append,
            on_connection_state=states.append,
            on_remote_track=tracks.append,
        )
        connection.fire("icecandidate", NetworkCandidate("c1"))
        connection.fire("connectionstatechange", "checking")
        connection.fire("track", FakeTrack("audio"))
        await handle.close()
        connection.fire("icecandidate", NetworkCandidate("c2"))
        connection.fire("connectionstatechange", "closed")
        connection.fire("track", FakeTrack("video"))

        assert [c.candidate for c in local] == ["c1"]
        assert states == ["checking"]
        assert len(tracks) == 1

    asyncio.run(scenario())


def test_attach_media_adds_every_track() -> None:
    connection = FakeConnection()
    handle = ConnectionHandle(connection)
    tracks = [FakeTrack("video"), FakeTrack("audio")]
    handle.attach_media(LocalMedia(tracks=tracks))

    assert connection.tracks == tracks
    assert handle.local_media is not None
    assert [t.kind for t in handle.local_media.video_tracks()] == ["video"]
