"""TTL-bounded flood of DATA towards the server and ACKs back to the origin."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Dict, Optional

from .packet import Payload, ProtocolKey, WaveKind

if TYPE_CHECKING:
    from ..analysis.statistics import Statistics
    from ..core.device import Node
    from ..core.simulation import Simulation
    from ..core.wave import Wave

logger = logging.getLogger(__name__)


class FloodProtocol:
    """Decides, for every successful reception, whether to relay, ack or drop.

    Dedup state lives on the nodes themselves (``seen_data`` /
    ``seen_ack``); the protocol owns the sequence counter and the table of
    first-emission times used for latency.
    """

    def __init__(self, sim: "Simulation", seq_start: int = 1) -> None:
        self.sim = sim
        self.next_seq = seq_start
        self.emitted_at: Dict[ProtocolKey, float] = {}

    @property
    def stats(self) -> "Statistics":
        return self.sim.stats

    def reset(self, seq_start: int = 1) -> None:
        self.next_seq = seq_start
        self.emitted_at.clear()

    # ------------------------------------------------------------------
    def originate(self, node: "Node", now_ms: float) -> Payload:
        """New DATA payload from *node* with a fresh sequence number."""
        seq = self.next_seq
        self.next_seq += 1
        payload = Payload(
            origin=node.id,
            seq=seq,
            created_ms=now_ms,
            temperature=round(20.0 + random.random() * 5.0, 1),
        )
        self.emitted_at[payload.key] = now_ms
        self.stats.data_sent += 1
        return payload

    # ------------------------------------------------------------------
    def on_receive(self, node: "Node", wave: "Wave", now_ms: float) -> Optional["Wave"]:
        """Apply the protocol to a wave *node* just decoded.

        Returns the wave emitted in response, if any.
        """
        if node.is_server:
            if wave.kind is WaveKind.DATA:
                return self._server_data(node, wave)
            return None
        if wave.kind is WaveKind.DATA:
            return self._hive_data(node, wave)
        return self._hive_ack(node, wave, now_ms)

    def _server_data(self, server: "Node", wave: "Wave") -> Optional["Wave"]:
        key = wave.payload.key
        if key in server.seen_data:
            self.stats.dup_ignored += 1
            self.stats.server_dup_ignored += 1
            return None
        server.seen_data.add(key)
        self.stats.data_delivered += 1
        logger.info("%s received DATA seq:%d from %s", server.id, wave.payload.seq, wave.origin)
        return self.sim.emit(server.id, WaveKind.ACK, wave.payload, ttl=max(1, wave.payload.hops))

    def _hive_data(self, hive: "Node", wave: "Wave") -> Optional["Wave"]:
        if hive.id == wave.origin:
            return None
        key = wave.payload.key
        if key in hive.seen_data:
            self.stats.dup_ignored += 1
            return None
        hive.seen_data.add(key)
        if wave.ttl <= 0:
            self.stats.ttl_drops += 1
            logger.debug("%s drops DATA seq:%d (TTL exhausted)", hive.id, wave.payload.seq)
            return None
        self.stats.relays_data += 1
        return self.sim.emit(hive.id, WaveKind.DATA, wave.payload.relayed(), ttl=wave.ttl - 1)

    def _hive_ack(self, hive: "Node", wave: "Wave", now_ms: float) -> Optional["Wave"]:
        key = wave.payload.key
        if hive.id == wave.origin:
            if key not in hive.seen_ack:
                hive.seen_ack.add(key)
                t0 = self.emitted_at.pop(key, None)
                if t0 is not None:
                    self.stats.latency_sum_ms += now_ms - t0
                self.stats.deliveries += 1
                self.stats.total_hops += wave.payload.hops
                self.stats.origin_acked += 1
                logger.info("%s received its ACK seq:%d", hive.id, wave.payload.seq)
            return None
        # Duplicate ACKs are dropped silently: dup_ignored only counts DATA
        if wave.ttl > 0 and key not in hive.seen_ack:
            hive.seen_ack.add(key)
            self.stats.relays_ack += 1
            return self.sim.emit(hive.id, WaveKind.ACK, wave.payload, ttl=wave.ttl - 1)
        return None
