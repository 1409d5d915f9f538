"""
Quantization module for self-compressing layers.

This module provides the core quantization functionality including:
- Configuration management
- The simulated quantizer with learnable bit-depth and exponent
- Straight-through rounding
"""

from .params import QuantizationConfig
from .functional import quantize, ste_round, effective_bits, quantization_error

__all__ = [
    "QuantizationConfig",
    "quantize",
    "ste_round",
    "effective_bits",
    "quantization_error",
]
