"""
Functional quantized convolution.

The kernel is quantized per output channel, rounded with a
straight-through estimator and handed to the torch convolution
primitives. Kernels use the torch layout
``(units, in_channels // feature_group_size, *kernel_size)``.
"""

from typing import List, Sequence, Tuple, Union
import torch
import torch.nn.functional as F

from ..quant import quantize, ste_round

IntOrTuple = Union[int, Sequence[int]]
Padding = Union[str, int, Sequence[Union[int, Tuple[int, int]]]]

_CONV_FNS = {1: F.conv1d, 2: F.conv2d, 3: F.conv3d}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def expand_spatial(value: IntOrTuple, ndim: int, name: str) -> Tuple[int, ...]:
    """Expand an int or per-axis sequence of positive ints to ``ndim`` entries."""
    if _is_int(value):
        values = (value,) * ndim
    else:
        values = tuple(value)
        if len(values) != ndim:
            raise ValueError(f"{name} must have {ndim} entries, got {len(values)}")
    for v in values:
        if not _is_int(v) or v <= 0:
            raise ValueError(f"{name} entries must be positive integers, got {values}")
    return values


def normalize_padding(padding: Padding, ndim: int) -> Union[str, List[Tuple[int, int]]]:
    """
    Normalize padding given as a mode, an int or per-axis values.

    Args:
        padding: 'valid', 'same', an int, or per-axis ints or (lo, hi) pairs
        ndim: Number of spatial axes

    Returns:
        'valid', 'same' or a list of (lo, hi) pairs
    """
    if isinstance(padding, str):
        mode = padding.lower()
        if mode not in ("valid", "same"):
            raise ValueError(f"Unsupported padding mode: {padding}")
        return mode
    if _is_int(padding):
        padding = [padding] * ndim

    pairs = list(padding)
    if len(pairs) != ndim:
        raise ValueError(f"padding must have {ndim} entries, got {len(pairs)}")
    normalized = []
    for pad in pairs:
        if _is_int(pad):
            normalized.append((pad, pad))
            continue
        pad = tuple(pad)
        if len(pad) != 2 or not all(_is_int(p) for p in pad):
            raise ValueError(f"padding entries must be ints or (lo, hi) pairs, got {pad}")
        normalized.append(pad)
    if any(p < 0 for pair in normalized for p in pair):
        raise ValueError(f"padding must be non-negative, got {normalized}")
    return normalized


def check_group_sizes(units: int, feature_group_size: int, batch_group_size: int) -> None:
    """Validate feature and batch group sizes against the output channel count."""
    for name, value in (("feature_group_size", feature_group_size), ("batch_group_size", batch_group_size)):
        if not _is_int(value) or value <= 0:
            raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if units % value != 0:
            raise ValueError(f"units {units} must be divisible by {name} {value}")
    if feature_group_size > 1 and batch_group_size > 1:
        raise ValueError("feature_group_size and batch_group_size cannot both exceed 1")


def _padding_pairs(
    padding: Union[str, List[Tuple[int, int]]],
    spatial: Sequence[int],
    kernel: Sequence[int],
    strides: Sequence[int],
    kernel_dilation: Sequence[int],
) -> List[Tuple[int, int]]:
    if padding == "valid":
        return [(0, 0)] * len(spatial)
    if padding == "same":
        pairs = []
        for size, k, s, d in zip(spatial, kernel, strides, kernel_dilation):
            extent = (k - 1) * d + 1
            out = -(-size // s)
            total = max((out - 1) * s + extent - size, 0)
            pairs.append((total // 2, total - total // 2))
        return pairs
    return padding


def _dilate_input(x: torch.Tensor, dilation: Sequence[int]) -> torch.Tensor:
    """Insert ``d - 1`` zeros between neighbouring elements along each spatial axis."""
    if all(d == 1 for d in dilation):
        return x
    spatial = [(s - 1) * d + 1 for s, d in zip(x.shape[2:], dilation)]
    out = x.new_zeros(tuple(x.shape[:2]) + tuple(spatial))
    index = (slice(None), slice(None)) + tuple(slice(None, None, d) for d in dilation)
    out[index] = x
    return out


def _check_channel_param(param: torch.Tensor, weight: torch.Tensor, name: str) -> torch.Tensor:
    """Shape a per-output-channel parameter to broadcast over the kernel."""
    units = weight.shape[0]
    rank = weight.dim()
    if not isinstance(param, torch.Tensor):
        return torch.tensor(float(param), dtype=weight.dtype, device=weight.device)
    if param.dim() == 0:
        return param
    if param.dim() == 1 and param.shape[0] == units:
        return param.reshape((units,) + (1,) * (rank - 1))
    if (
        param.dim() == rank
        and param.shape[0] in (1, units)
        and all(s == 1 for s in param.shape[1:])
    ):
        return param
    raise ValueError(
        f"{name} of shape {tuple(param.shape)} does not broadcast over the "
        f"output-channel axis of a kernel of shape {tuple(weight.shape)}"
    )


def quantized_kernel(weight: torch.Tensor, b, e) -> torch.Tensor:
    """
    Quantize a kernel and round it with a straight-through estimator.

    The forward value is ``round(quantize(weight, b, e))``; gradients reach
    weight, b and e as if no rounding took place.
    """
    b = _check_channel_param(b, weight, "b")
    e = _check_channel_param(e, weight, "e")
    wq = quantize(weight, b, e, round_fn=ste_round)
    return ste_round(wq)


def _convolve(
    x: torch.Tensor,
    weight: torch.Tensor,
    strides: Tuple[int, ...],
    kernel_dilation: Tuple[int, ...],
    feature_group_size: int,
    batch_group_size: int,
) -> torch.Tensor:
    conv = _CONV_FNS[weight.dim() - 2]
    if batch_group_size == 1:
        return conv(x, weight, stride=strides, dilation=kernel_dilation, groups=feature_group_size)

    # Batch group g is convolved with output-channel group g.
    outputs = [
        conv(xg, wg, stride=strides, dilation=kernel_dilation)
        for xg, wg in zip(
            torch.chunk(x, batch_group_size, dim=0),
            torch.chunk(weight, batch_group_size, dim=0),
        )
    ]
    return torch.cat(outputs, dim=1)


def qconv(
    input: torch.Tensor,
    weight: torch.Tensor,
    b,
    e,
    strides: IntOrTuple = 1,
    padding: Padding = "valid",
    input_dilation: IntOrTuple = 1,
    kernel_dilation: IntOrTuple = 1,
    channels: str = "first",
    feature_group_size: int = 1,
    batch_group_size: int = 1,
) -> torch.Tensor:
    """
    Convolution with a self-compressing quantized kernel.

    Args:
        input: Tensor of shape [N, C, *spatial] ('first') or [N, *spatial, C]
            ('last'); the batch axis may be omitted
        weight: Kernel of shape [units, C // feature_group_size, *kernel_size]
        b: Bit-depth per output channel, shape [units], [units, 1, ..., 1] or scalar
        e: Exponent per output channel, same shapes as b
        strides: Stride per spatial axis
        padding: 'valid', 'same', an int, or per-axis ints or (lo, hi) pairs
        input_dilation: Zero-insertion factor of the input per spatial axis
        kernel_dilation: Kernel dilation per spatial axis
        channels: Channel ordering, 'first' or 'last'
        feature_group_size: Number of feature groups
        batch_group_size: Number of batch groups

    Returns:
        Convolution output in the same channel ordering as the input
    """
    ndim = weight.dim() - 2
    if ndim not in _CONV_FNS:
        raise ValueError(f"Only 1, 2 and 3 spatial dimensions are supported, got kernel of rank {weight.dim()}")
    if channels not in ("first", "last"):
        raise ValueError(f"channels must be 'first' or 'last', got {channels!r}")
    check_group_sizes(weight.shape[0], feature_group_size, batch_group_size)

    strides = expand_spatial(strides, ndim, "strides")
    input_dilation = expand_spatial(input_dilation, ndim, "input_dilation")
    kernel_dilation = expand_spatial(kernel_dilation, ndim, "kernel_dilation")
    padding = normalize_padding(padding, ndim)

    unbatched = input.dim() == ndim + 1
    if unbatched:
        input = input.unsqueeze(0)
    elif input.dim() != ndim + 2:
        raise ValueError(f"Expected input of rank {ndim + 1} or {ndim + 2}, got {input.dim()}")

    x = input.movedim(-1, 1) if channels == "last" else input
    expected_channels = weight.shape[1] * feature_group_size
    if x.shape[1] != expected_channels:
        raise ValueError(f"Input has {x.shape[1]} channels, kernel expects {expected_channels}")
    if x.shape[0] % batch_group_size != 0:
        raise ValueError(f"Batch size {x.shape[0]} is not divisible by batch_group_size {batch_group_size}")

    kernel = quantized_kernel(weight, b, e)

    x = _dilate_input(x, input_dilation)
    pairs = _padding_pairs(padding, x.shape[2:], weight.shape[2:], strides, kernel_dilation)
    if any(p != (0, 0) for p in pairs):
        # F.pad lists the last axis first.
        flat = [p for pair in reversed(pairs) for p in pair]
        x = F.pad(x, flat)

    out = _convolve(x, kernel, strides, kernel_dilation, feature_group_size, batch_group_size)

    if channels == "last":
        out = out.movedim(1, -1)
    if unbatched:
        out = out.squeeze(0)
    return out
