"""Protocol counters and the averages derived from them."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Dict, Optional


@dataclass
class Statistics:
    """Monotonic counters fed by the flood protocol.

    ``server_shadow_drops`` and ``server_dup_ignored`` are the server's
    share of ``shadow_drops`` and ``dup_ignored``.
    """

    data_sent: int = 0
    data_delivered: int = 0
    origin_acked: int = 0
    relays_data: int = 0
    relays_ack: int = 0
    ttl_drops: int = 0
    shadow_drops: int = 0
    dup_ignored: int = 0
    deliveries: int = 0
    total_hops: int = 0
    latency_sum_ms: float = 0.0
    server_shadow_drops: int = 0
    server_dup_ignored: int = 0

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, type(f.default)())

    # ------------------------------------------------------------------
    @property
    def success_pct(self) -> Optional[float]:
        """Share of originated DATA whose ACK made it back to the origin."""
        if not self.data_sent:
            return None
        return round(100.0 * self.origin_acked / self.data_sent, 1)

    @property
    def avg_hops(self) -> Optional[float]:
        return self.total_hops / self.deliveries if self.deliveries else None

    @property
    def avg_latency_ms(self) -> Optional[float]:
        return self.latency_sum_ms / self.deliveries if self.deliveries else None

    def snapshot(self) -> Dict[str, object]:
        out: Dict[str, object] = asdict(self)
        out["success_pct"] = self.success_pct
        out["avg_hops"] = self.avg_hops
        out["avg_latency_ms"] = self.avg_latency_ms
        return out

    def report(self) -> str:
        def _fmt(v: Optional[float], unit: str = "", digits: int = 2) -> str:
            return "—" if v is None else f"{v:.{digits}f}{unit}"

        return (
            f"DATA sent:       {self.data_sent}\n"
            f"To server:       {self.data_delivered}\n"
            f"ACK to origin:   {self.origin_acked} (success: {_fmt(self.success_pct, '%', 1)})\n"
            f"Relayed DATA:    {self.relays_data}\n"
            f"Relayed ACK:     {self.relays_ack}\n"
            f"TTL drops:       {self.ttl_drops}\n"
            f"Shadow drops:    {self.shadow_drops}\n"
            f"Dup ignored:     {self.dup_ignored}\n"
            f"Avg hops:        {_fmt(self.avg_hops)}\n"
            f"Avg latency:     {_fmt(self.avg_latency_ms, ' ms', 0)}"
        )
