"""Exception types raised by backspin."""

from __future__ import annotations


class BackspinError(Exception):
    """Base class for all backspin errors."""


class RateInputError(BackspinError, ValueError):
    """Rate text could not be parsed into a finite number."""


class DecodeError(BackspinError):
    """Fetching or decoding an instance's source audio failed."""


class TransportError(BackspinError):
    """The underlying transport rejected an operation (e.g. a rate assignment)."""
