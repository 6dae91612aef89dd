from .pathloss import free_space_path_loss, max_range_meters
from .attenuation import (
    attenuation_factor,
    obstacle_loss_db,
    received_power_dbm,
    visual_max_radius_px,
    legacy_range_px,
    legacy_rx_threshold,
)

__all__ = [
    "free_space_path_loss", "max_range_meters",
    "attenuation_factor", "obstacle_loss_db", "received_power_dbm",
    "visual_max_radius_px", "legacy_range_px", "legacy_rx_threshold",
]
