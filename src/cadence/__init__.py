"""Cadence: spaced-repetition scheduling engine."""

from cadence.consts import VERSION

__version__ = VERSION
