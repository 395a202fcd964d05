"""Shared-rate speed control and reverse playback for independent audio players."""

from __future__ import annotations

from backspin.errors import BackspinError, DecodeError, RateInputError, TransportError
from backspin.player import BarePlayer, EnhancedPlayer, PlaybackInstance, enhance_player
from backspin.rate import MAX_RATE, MIN_RATE, RateController, RateState
from backspin.registry import InstanceRegistry
from backspin.reverse import ReversedBuffer, ReversePlaybackEngine, ReverseState, reverse_position

__all__ = [
    "MAX_RATE",
    "MIN_RATE",
    "BackspinError",
    "BarePlayer",
    "DecodeError",
    "EnhancedPlayer",
    "InstanceRegistry",
    "PlaybackInstance",
    "RateController",
    "RateInputError",
    "RateState",
    "ReversePlaybackEngine",
    "ReverseState",
    "ReversedBuffer",
    "TransportError",
    "enhance_player",
    "reverse_position",
]
