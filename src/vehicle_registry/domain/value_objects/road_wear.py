"""Road wear index coefficients (fourth power law)."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

MAX_AXLE_BUCKET = 6


@dataclass(frozen=True)
class RoadWearConfiguration:
    """
    Coefficients applied to net_mass^4 when computing the road wear index.

    Each coefficient is the sum of the fourth powers of the share of the
    vehicle weight carried by each axle. Axle counts above the largest
    configured bucket use that bucket. Rows with no axle count fall back
    to a coefficient keyed by vehicle type code, then to the default.
    """

    coefficients: Dict[int, float] = field(default_factory=lambda: {
        2: 0.1325,
        3: 0.0234,
        4: 0.0156,
        5: 0.0080,
        6: 0.0046,
    })
    vehicle_type_fallbacks: Dict[str, float] = field(default_factory=lambda: {
        "CA": 0.0234,
        "VO": 0.0234,
        "AB": 0.1935,
    })
    default_coefficient: float = 0.125

    def __post_init__(self):
        if not self.coefficients:
            raise ValueError("At least one axle coefficient is required")
        for axles, coefficient in self.coefficients.items():
            if axles < 2:
                raise ValueError(f"Axle count must be at least 2: {axles}")
            if not (0.0 < coefficient <= 1.0):
                raise ValueError(f"Coefficient for {axles} axles must be in (0, 1]: {coefficient}")
        for code, coefficient in self.vehicle_type_fallbacks.items():
            if not (0.0 < coefficient <= 1.0):
                raise ValueError(f"Fallback coefficient for {code} must be in (0, 1]: {coefficient}")
        if not (0.0 < self.default_coefficient <= 1.0):
            raise ValueError(f"Default coefficient must be in (0, 1]: {self.default_coefficient}")

    @classmethod
    def from_settings(cls, settings) -> "RoadWearConfiguration":
        return cls(
            coefficients={int(k): float(v) for k, v in settings.rwi_coefficients.items()},
            vehicle_type_fallbacks=dict(settings.rwi_vehicle_type_fallbacks),
            default_coefficient=settings.rwi_default_coefficient,
        )

    @staticmethod
    def coefficient_from_distribution(weight_shares: Sequence[float]) -> float:
        """Sum of fourth powers of per-axle weight shares. Shares must sum to 1."""
        if not weight_shares:
            raise ValueError("Weight distribution cannot be empty")
        total = sum(weight_shares)
        if abs(total - 1.0) > 0.001:
            raise ValueError(f"Weight shares must sum to 1.0: {total}")
        return sum(share ** 4 for share in weight_shares)

    @property
    def max_bucket(self) -> int:
        return max(self.coefficients)

    def coefficient_for(self, axle_count: Optional[int], vehicle_type: Optional[str] = None) -> float:
        """Coefficient for a single vehicle, mirroring the SQL CASE expression."""
        if axle_count is not None:
            bucket = min(axle_count, self.max_bucket)
            if bucket in self.coefficients:
                return self.coefficients[bucket]
            return self.default_coefficient
        if vehicle_type is not None and vehicle_type in self.vehicle_type_fallbacks:
            return self.vehicle_type_fallbacks[vehicle_type]
        return self.default_coefficient
