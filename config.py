"""
Anchor Tag Locator deployment configuration.
"""

# Positioning configuration
LOCALIZATION_CONFIG = {
    "bucket_width_s": 4,              # Window width, must stay below the ping interval
    "tag_ping_interval_s": 15,        # Tag reporting interval
    "min_anchors": 3,                 # Minimum distinct anchors per window
    "reference_elevation_m": 159.0,   # Shared anchor elevation, depth is measured from it
    "max_workers": 1,                 # Solver threads per tag
}

# RSSI -> distance calibration (fitted offline, deployment specific)
DISTANCE_MODEL_CONFIG = {
    "a": 70.6782179721831,
    "b": 0.09839014213440837,
}

# Multilateration solver tuning
SOLVER_CONFIG = {
    "max_iterations": 100000,
    "damping": 1e-25,
    "damping_step_factor": 10.0,
    "gradient_difference": None,      # None = analytic Jacobian
    "residual_mode": "squared",       # "squared" or "range"
}

# Storage
STORE_CONFIG = {
    "db_path": "atl.db",
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
