"""Logical messages carried by waves."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

ProtocolKey = Tuple[str, int]


class WaveKind(str, Enum):
    DATA = "DATA"
    ACK = "ACK"


@dataclass(frozen=True)
class Payload:
    """Application message shared by every flooded copy.

    ``(origin, seq)`` identifies the logical message; ``hops`` counts the
    relays a DATA copy went through before reaching the current holder.
    """

    origin: str
    seq: int
    created_ms: float
    hops: int = 0
    temperature: Optional[float] = None

    @property
    def key(self) -> ProtocolKey:
        return (self.origin, self.seq)

    def relayed(self) -> "Payload":
        return replace(self, hops=self.hops + 1)


def format_key(key: ProtocolKey) -> str:
    return f"{key[0]}#{key[1]}"


def parse_key(text: str) -> ProtocolKey:
    """Inverse of :func:`format_key`.

    Raises
    ------
    ValueError
        If *text* is not ``"<origin>#<int>"``.
    """
    origin, sep, seq = text.rpartition("#")
    if not sep or not origin:
        raise ValueError(f"Invalid protocol key '{text}'")
    return (origin, int(seq))
