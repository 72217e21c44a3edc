"""Live channel connectivity states."""

from enum import IntEnum, auto, unique


@unique
class ConnectionState(IntEnum):
    """State of the live channel as seen by its owner."""

    CONNECTING = auto()
    OPEN = auto()
    CLOSED = auto()
