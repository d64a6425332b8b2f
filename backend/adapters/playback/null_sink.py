"""Discarding sink; remembers what it was asked to play."""

from __future__ import annotations

from adapters.playback.base import PlaybackSink
from orchestrator.segments import SynthesizedAudio


class NullSink(PlaybackSink):
    def __init__(self) -> None:
        self.played: list[tuple[int, int]] = []

    async def play(self, audio: SynthesizedAudio) -> None:
        self.played.append(audio.seq_range)
