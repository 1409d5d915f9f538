"""
Compression objective for self-compressing networks.

The training loss adds the average number of simulated bits per weight,
summed over every quantized layer, to the task loss. Gradients of this
term push bit-depths toward zero, which is what removes channels.
"""

from typing import Dict, List, Optional
import torch
import torch.nn as nn
import torch.nn.functional as F

from ..quant import QuantizationConfig
from .conv import QConv


def _quantized_layers(model: nn.Module) -> List[QConv]:
    layers = [m for m in model.modules() if isinstance(m, QConv)]
    if not layers:
        raise ValueError(f"{type(model).__name__} contains no quantized layers")
    return layers


def compression_loss(model: nn.Module) -> torch.Tensor:
    """
    Average simulated bits per weight over all quantized layers.

    Args:
        model: Module containing one or more QConv layers

    Returns:
        Scalar tensor, differentiable with respect to every layer's ``b``
    """
    layers = _quantized_layers(model)
    total_bits = sum(layer.bits() for layer in layers)
    total_weights = sum(layer.weight.numel() for layer in layers)
    return total_bits / total_weights


def compression_stats(model: nn.Module) -> Dict[str, float]:
    """Summarize the current size of all quantized layers."""
    layers = _quantized_layers(model)
    with torch.no_grad():
        total_bits = float(sum(layer.bits() for layer in layers).item())
    total_weights = sum(layer.weight.numel() for layer in layers)
    bits_per_weight = total_bits / total_weights
    return {
        "total_bits": total_bits,
        "total_weights": total_weights,
        "bits_per_weight": bits_per_weight,
        "compression_ratio": 32.0 / bits_per_weight if bits_per_weight > 0 else float("inf"),
        "active_channels": sum(layer.active_channels() for layer in layers),
        "total_channels": sum(layer.units for layer in layers),
    }


class SelfCompressingLoss(nn.Module):
    """
    Cross-entropy plus a penalty on the average bit-depth.

    ``loss = cross_entropy(logits, target) + compression_factor * Q`` where
    Q is :func:`compression_loss` of the model being trained.
    """

    def __init__(
        self,
        compression_factor: Optional[float] = None,
        config: Optional[QuantizationConfig] = None,
    ):
        super().__init__()
        if compression_factor is None:
            config = config if config is not None else QuantizationConfig()
            compression_factor = config.compression_factor
        if compression_factor < 0:
            raise ValueError("compression_factor must be non-negative")
        self.compression_factor = compression_factor

    def forward(self, logits: torch.Tensor, target: torch.Tensor, model: nn.Module) -> torch.Tensor:
        return F.cross_entropy(logits, target) + self.compression_factor * compression_loss(model)

    def extra_repr(self) -> str:
        return f"compression_factor={self.compression_factor}"
