"""
Parameter management for self-compressing quantization.

This module provides the configuration class holding the initial
precision parameters and training constants of self-compressing layers.
"""

import math
import warnings
from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class QuantizationConfig:
    """
    Configuration class for self-compressing quantizer parameters.

    Every quantized layer starts each output channel at the same bit-depth
    and exponent; both are then learned jointly with the weights.

    The kernel used by a layer's forward pass is rounded to integers after
    quantization. With the defaults (init_e=-8 and glorot weights well
    inside +-0.5) every rounded kernel entry is zero, so a fresh layer
    outputs zeros; gradients still reach the weights through the
    straight-through estimator. Use init_e >= 0 together with weights of
    magnitude above 0.5 for layers that are active from the first step.

    Attributes:
        init_b: Initial bit-depth of every output channel
        init_e: Initial exponent of every output channel (step size 2**init_e)
        kernel_initializer: Name of the initializer used for kernel weights
        compression_factor: Weight of the average-bits term in the training loss
    """

    init_b: float = 16.0
    init_e: float = -8.0
    kernel_initializer: str = "glorot_uniform"
    compression_factor: float = 0.015

    def __post_init__(self):
        """Validate parameters after initialization."""
        for name in ("init_b", "init_e", "compression_factor"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a real number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
        if self.compression_factor < 0:
            raise ValueError("compression_factor must be non-negative")
        if not isinstance(self.kernel_initializer, str) or not self.kernel_initializer:
            raise ValueError("kernel_initializer must be a non-empty string")
        if self.init_b <= 0:
            warnings.warn(
                f"init_b={self.init_b} rectifies to zero bits; "
                "every weight will quantize to zero at initialization."
            )

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "QuantizationConfig":
        """Create configuration from dictionary."""
        return cls(**config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "init_b": self.init_b,
            "init_e": self.init_e,
            "kernel_initializer": self.kernel_initializer,
            "compression_factor": self.compression_factor,
        }

    def get_rate(self) -> float:
        """
        Calculate the initial rate in bits per weight.

        Returns:
            Rectified initial bit-depth
        """
        return max(float(self.init_b), 0.0)

    def get_compression_ratio(self) -> float:
        """
        Calculate the initial compression ratio against float32 weights.

        Returns:
            Compression ratio (original bits / compressed bits)
        """
        original_bits = 32  # float32
        compressed_bits = self.get_rate()
        if compressed_bits == 0:
            return math.inf
        return original_bits / compressed_bits

    def __repr__(self) -> str:
        """String representation of the configuration."""
        return (
            f"QuantizationConfig(init_b={self.init_b:.3f}, init_e={self.init_e:.3f}, "
            f"kernel_initializer={self.kernel_initializer}, "
            f"compression_factor={self.compression_factor})"
        )
