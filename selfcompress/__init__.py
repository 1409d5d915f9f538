"""
Selfcompress: Self-Compressing Convolution Layers for PyTorch

Convolution layers whose weights pass through a simulated low-precision
quantizer. The bit-depth and exponent of every output channel are learned
jointly with the weights, so training itself decides how many bits each
channel needs and which channels can be dropped.

Key Features:
- Differentiable quantizer with learnable bit-depth and exponent
- Straight-through rounding
- 1D, 2D and 3D quantized convolutions with strides, padding, dilation and groups
- Compression-aware training loss
"""

__version__ = "0.1.0"
__author__ = "Selfcompress Development Team"

# Core imports
from .quant import QuantizationConfig, quantize, ste_round
from .nn import QConv, QConv1d, QConv2d, QConv3d, qconv, SelfCompressingLoss, compression_loss

__all__ = [
    "QuantizationConfig",
    "quantize",
    "ste_round",
    "QConv",
    "QConv1d",
    "QConv2d",
    "QConv3d",
    "qconv",
    "SelfCompressingLoss",
    "compression_loss",
]
