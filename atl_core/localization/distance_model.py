"""
RSSI Distance Model.

Converts received signal strength into an estimated range using the inverse
of a logarithmic attenuation curve fitted offline:

    rssi = -a * log10(b * d - 1)   <=>   d = (10 ** (rssi / -a) + 1) / b

The constants a and b are deployment calibration values. They are treated as
configuration; no generic defaults are safe across deployments.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

# Reference deployment calibration (fitted against empirical RSSI/distance pairs)
REFERENCE_A = 70.6782179721831
REFERENCE_B = 0.09839014213440837


@dataclass(frozen=True)
class RssiDistanceModel:
    """
    Closed-form RSSI to distance conversion.

    Attributes:
        a: Curve amplitude (dB per decade)
        b: Curve scale (1/m)

    Usage:
        model = RssiDistanceModel(a=70.678, b=0.0984)
        d = model.estimate_range(-85.0)
    """

    a: float
    b: float

    def __post_init__(self):
        """Validate calibration constants."""
        if self.a == 0:
            raise ValueError("Calibration constant a must be non-zero")

        if self.b == 0:
            raise ValueError("Calibration constant b must be non-zero")

    def estimate_range(self, rssi: float) -> float:
        """
        Estimate range for one RSSI sample.

        Args:
            rssi: Received signal strength (dBm)

        Returns:
            Estimated distance (same length unit the curve was fitted in),
            inf when the curve overflows
        """
        return float(self.estimate_ranges([rssi])[0])

    def estimate_ranges(self, rssi_values: Sequence[float]) -> np.ndarray:
        """Vectorized estimate_range over a sequence of samples."""
        rssi = np.asarray(rssi_values, dtype=float)
        with np.errstate(over='ignore'):
            return (np.power(10.0, rssi / -self.a) + 1.0) / self.b

    def expected_rssi(self, distance: float) -> float:
        """
        Forward curve: RSSI the model predicts at a given distance.

        Only defined where b * distance > 1.
        """
        arg = self.b * distance - 1.0
        if arg <= 0:
            raise ValueError(
                f"Distance {distance} outside model domain (needs b*d > 1)"
            )
        return -self.a * float(np.log10(arg))


def create_reference_model() -> RssiDistanceModel:
    """Distance model with the reference deployment calibration."""
    return RssiDistanceModel(a=REFERENCE_A, b=REFERENCE_B)
