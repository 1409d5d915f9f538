"""
Neural network modules for self-compressing training.

This module provides PyTorch modules and functions that integrate the
learnable-precision quantizer with convolution layers and the training
objective.
"""

from .functional import qconv, quantized_kernel
from .conv import QConv, QConv1d, QConv2d, QConv3d
from .compression import compression_loss, compression_stats, SelfCompressingLoss
from .init import constant, get_initializer

__all__ = [
    "qconv",
    "quantized_kernel",
    "QConv",
    "QConv1d",
    "QConv2d",
    "QConv3d",
    "compression_loss",
    "compression_stats",
    "SelfCompressingLoss",
    "constant",
    "get_initializer",
]
