"""
Self-compressing quantized convolution layer.

This module provides a PyTorch convolution layer whose kernel is quantized
per output channel with a learnable bit-depth and exponent. Channels whose
bit-depth is driven to zero collapse to zero and can be pruned.
"""

from typing import Optional, Union
import torch
import torch.nn as nn

from ..quant import QuantizationConfig, quantize, effective_bits
from .functional import (
    IntOrTuple,
    Padding,
    check_group_sizes,
    expand_spatial,
    normalize_padding,
    qconv,
)
from .init import Initializer, constant, get_initializer


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class QConv(nn.Module):
    """
    Convolution with a self-compressing quantized kernel.

    The layer holds a float kernel together with one bit-depth ``b`` and one
    exponent ``e`` per output channel. Every forward pass quantizes the
    kernel with these parameters and rounds it with a straight-through
    estimator, so ``weight``, ``b`` and ``e`` all receive gradients.
    No bias is applied.

    Attributes:
        in_channels: Number of input channels
        units: Number of output channels
        kernel_size: Spatial size of the kernel
        strides: Stride per spatial axis
        padding: 'valid', 'same' or explicit (lo, hi) pairs
        input_dilation: Zero-insertion factor of the input per spatial axis
        kernel_dilation: Kernel dilation per spatial axis
        channels: Channel ordering of inputs and outputs ('first' or 'last')
        feature_group_size: Number of feature groups
        batch_group_size: Number of batch groups
        config: Quantization configuration
    """

    def __init__(
        self,
        in_channels: int,
        units: int,
        kernel_size: IntOrTuple,
        strides: IntOrTuple = 1,
        padding: Padding = "valid",
        input_dilation: IntOrTuple = 1,
        kernel_dilation: IntOrTuple = 1,
        channels: str = "first",
        feature_group_size: int = 1,
        batch_group_size: int = 1,
        kernel_initializer: Optional[Union[str, Initializer]] = None,
        init_b: Optional[Union[float, torch.Tensor]] = None,
        init_e: Optional[Union[float, torch.Tensor]] = None,
        config: Optional[QuantizationConfig] = None,
        ndim: Optional[int] = None,
    ):
        """
        Initialize the quantized convolution layer.

        Args:
            in_channels: Number of input channels
            units: Number of output channels
            kernel_size: Kernel size, int or per spatial axis
            strides: Stride, int or per spatial axis
            padding: 'valid', 'same', an int, or per-axis ints or (lo, hi) pairs
            input_dilation: Input dilation, int or per spatial axis
            kernel_dilation: Kernel dilation, int or per spatial axis
            channels: 'first' for [N, C, *spatial], 'last' for [N, *spatial, C]
            feature_group_size: Number of feature groups
            batch_group_size: Number of batch groups
            kernel_initializer: Initializer name or callable (defaults to config)
            init_b: Initial bit-depth, float or tensor of shape [units] (defaults to config)
            init_e: Initial exponent, float or tensor of shape [units] (defaults to config)
            config: Quantization configuration (defaults to QuantizationConfig())
            ndim: Number of spatial axes when kernel_size is an int (defaults to 2)
        """
        super().__init__()

        if not _is_positive_int(units):
            raise ValueError(f"units must be a positive integer, got {units!r}")
        if not _is_positive_int(in_channels):
            raise ValueError(f"in_channels must be a positive integer, got {in_channels!r}")
        if channels not in ("first", "last"):
            raise ValueError(f"channels must be 'first' or 'last', got {channels!r}")

        if ndim is None:
            ndim = 2 if isinstance(kernel_size, int) else len(tuple(kernel_size))
        if ndim not in (1, 2, 3):
            raise ValueError(f"Only 1, 2 and 3 spatial dimensions are supported, got {ndim}")

        check_group_sizes(units, feature_group_size, batch_group_size)
        if in_channels % feature_group_size != 0:
            raise ValueError(
                f"in_channels {in_channels} must be divisible by feature_group_size {feature_group_size}"
            )

        self.config = config if config is not None else QuantizationConfig()
        self.in_channels = in_channels
        self.units = units
        self.kernel_size = expand_spatial(kernel_size, ndim, "kernel_size")
        self.strides = expand_spatial(strides, ndim, "strides")
        self.padding = normalize_padding(padding, ndim)
        self.input_dilation = expand_spatial(input_dilation, ndim, "input_dilation")
        self.kernel_dilation = expand_spatial(kernel_dilation, ndim, "kernel_dilation")
        self.channels = channels
        self.feature_group_size = feature_group_size
        self.batch_group_size = batch_group_size

        # FP32 kernel in torch layout
        self.weight = nn.Parameter(
            torch.empty(units, in_channels // feature_group_size, *self.kernel_size)
        )
        initializer = kernel_initializer if kernel_initializer is not None else self.config.kernel_initializer
        get_initializer(initializer)(self.weight)

        # Per-output-channel precision parameters
        self.b = nn.Parameter(self._channel_param(
            init_b if init_b is not None else self.config.init_b, "init_b"
        ))
        self.e = nn.Parameter(self._channel_param(
            init_e if init_e is not None else self.config.init_e, "init_e"
        ))

    def _channel_param(self, value: Union[float, torch.Tensor], name: str) -> torch.Tensor:
        """Build a [units, 1, ..., 1] tensor from a float or a [units] tensor."""
        shape = (self.units,) + (1,) * (len(self.kernel_size) + 1)
        if isinstance(value, torch.Tensor):
            if value.dim() == 0:
                value = value.item()
            elif tuple(value.shape) not in ((self.units,), shape):
                raise ValueError(
                    f"{name} of shape {tuple(value.shape)} does not match {self.units} output channels"
                )
            else:
                return value.detach().clone().to(torch.get_default_dtype()).reshape(shape)
        param = torch.empty(shape)
        constant(float(value))(param)
        return param

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass with a quantized kernel.

        Args:
            x: Input tensor, [N, C, *spatial] or [N, *spatial, C] depending on
                ``channels``; the batch axis may be omitted

        Returns:
            Output tensor in the same channel ordering
        """
        return qconv(
            x,
            self.weight,
            self.b,
            self.e,
            strides=self.strides,
            padding=self.padding,
            input_dilation=self.input_dilation,
            kernel_dilation=self.kernel_dilation,
            channels=self.channels,
            feature_group_size=self.feature_group_size,
            batch_group_size=self.batch_group_size,
        )

    def quantized_weight(self) -> torch.Tensor:
        """The kernel actually used by the forward pass, detached."""
        with torch.no_grad():
            return torch.round(quantize(self.weight, self.b, self.e))

    @property
    def weights_per_channel(self) -> int:
        """Number of kernel weights feeding one output channel."""
        return self.weight[0].numel()

    def bits(self) -> torch.Tensor:
        """Total simulated size of the kernel in bits, differentiable in ``b``."""
        return effective_bits(self.b).sum() * self.weights_per_channel

    def active_channels(self) -> int:
        """Number of output channels with a positive bit-depth."""
        return int((effective_bits(self.b.detach()) > 0).sum().item())

    def get_quantization_stats(self) -> dict:
        """Get statistics about quantization."""
        b = self.b.detach()
        e = self.e.detach()
        bits = float(self.bits().detach().item())
        return {
            "weight_shape": tuple(self.weight.shape),
            "units": self.units,
            "active_channels": self.active_channels(),
            "bits": bits,
            "bits_per_weight": bits / self.weight.numel(),
            "mean_b": float(effective_bits(b).mean().item()),
            "mean_e": float(e.mean().item()),
            "quantization_error": float(
                torch.mean(torch.abs(self.quantized_weight() - self.weight.detach())).item()
            ),
            "config": self.config.to_dict(),
        }

    def extra_repr(self) -> str:
        """Extra representation string."""
        return (
            f"in_channels={self.in_channels}, units={self.units}, "
            f"kernel_size={self.kernel_size}, strides={self.strides}, "
            f"padding={self.padding}, channels={self.channels}, "
            f"feature_group_size={self.feature_group_size}, "
            f"batch_group_size={self.batch_group_size}"
        )


class QConv1d(QConv):
    """Quantized convolution over one spatial axis."""

    def __init__(self, in_channels: int, units: int, kernel_size: IntOrTuple, **kwargs):
        super().__init__(in_channels, units, kernel_size, ndim=1, **kwargs)


class QConv2d(QConv):
    """Quantized convolution over two spatial axes."""

    def __init__(self, in_channels: int, units: int, kernel_size: IntOrTuple, **kwargs):
        super().__init__(in_channels, units, kernel_size, ndim=2, **kwargs)


class QConv3d(QConv):
    """Quantized convolution over three spatial axes."""

    def __init__(self, in_channels: int, units: int, kernel_size: IntOrTuple, **kwargs):
        super().__init__(in_channels, units, kernel_size, ndim=3, **kwargs)
