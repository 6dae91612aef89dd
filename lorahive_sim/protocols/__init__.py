from .lora import LoRaParams, SF_SENSITIVITY, sensitivity_dbm, range_factor
from .packet import Payload, WaveKind, format_key, parse_key

__all__ = [
    "LoRaParams", "SF_SENSITIVITY", "sensitivity_dbm", "range_factor",
    "Payload", "WaveKind", "format_key", "parse_key",
]
