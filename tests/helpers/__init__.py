"""Test helpers package."""

from tests.helpers.pipes import open_reader, open_writer, read_envelope
from tests.helpers.wait import wait_until, wait_until_async

__all__ = [
    "open_reader",
    "open_writer",
    "read_envelope",
    "wait_until",
    "wait_until_async",
]
