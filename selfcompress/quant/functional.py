"""
Core quantization functions for self-compressing layers.

This module implements the simulated low-precision quantizer q(x, b, e)
whose bit-depth b and exponent e are learnable, together with the
straight-through rounding used to train through it.

Rounding follows torch.round, which rounds halves to the nearest even
integer.
"""

from typing import Callable, Union
import torch

Number = Union[int, float]


def _as_tensor(value: Union[torch.Tensor, Number], like: torch.Tensor) -> torch.Tensor:
    """Promote a Python number to a tensor matching ``like``; tensors pass through."""
    if isinstance(value, torch.Tensor):
        return value
    return torch.tensor(float(value), dtype=like.dtype, device=like.device)


def ste_round(x: torch.Tensor) -> torch.Tensor:
    """
    Round to the nearest integer with a straight-through gradient.

    The forward value is ``round(x)``; the backward pass treats the
    rounding as the identity because the residual is detached.

    Args:
        x: Input tensor

    Returns:
        Rounded tensor whose gradient with respect to x is one
    """
    return (torch.round(x) - x).detach() + x


def effective_bits(b: torch.Tensor) -> torch.Tensor:
    """Bit-depth actually in use: negative bit-depths count as zero."""
    return torch.relu(b)


def quantize(
    x: torch.Tensor,
    b: Union[torch.Tensor, Number],
    e: Union[torch.Tensor, Number],
    round_fn: Callable[[torch.Tensor], torch.Tensor] = torch.round,
) -> torch.Tensor:
    """
    Simulated low-precision quantization q(x, b, e).

    Values are expressed in units of the step 2**e, clamped to the signed
    range of a relu(b)-bit integer, rounded and scaled back. With the
    default ``round_fn`` the rounding has zero gradient, so this function
    on its own is a forward simulator; pass :func:`ste_round` to train
    through it.

    Args:
        x: Tensor to quantize
        b: Bit-depth, broadcastable to x (typically one value per channel)
        e: Exponent, broadcastable to x
        round_fn: Rounding applied to the clamped values

    Returns:
        Tensor of the broadcast shape whose values are integer multiples of 2**e
    """
    b = _as_tensor(b, x)
    e = _as_tensor(e, x)

    half_range = 2.0 ** (effective_bits(b) - 1)
    scaled = x * 2.0 ** (-e)
    clamped = torch.minimum(torch.maximum(scaled, -half_range), half_range - 1)
    return round_fn(clamped) * 2.0 ** e


def quantization_error(
    x: torch.Tensor,
    b: Union[torch.Tensor, Number],
    e: Union[torch.Tensor, Number],
    reduction: str = "mean",
) -> torch.Tensor:
    """
    Absolute error introduced by quantizing x.

    Args:
        x: Tensor to quantize
        b: Bit-depth, broadcastable to x
        e: Exponent, broadcastable to x
        reduction: 'mean', 'sum' or 'none'

    Returns:
        Reduced absolute error
    """
    error = torch.abs(quantize(x, b, e) - x)
    if reduction == "mean":
        return error.mean()
    if reduction == "sum":
        return error.sum()
    if reduction == "none":
        return error
    raise ValueError(f"Unsupported reduction: {reduction}")
