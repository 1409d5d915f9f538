"""
Named parameter initializers.

Layers accept either a name from this registry or any callable that fills
a tensor in place.
"""

from functools import partial
from typing import Callable, Union
import torch
import torch.nn as nn

Initializer = Callable[[torch.Tensor], torch.Tensor]


def constant(value: float) -> Initializer:
    """Initializer that fills a tensor with ``value``."""
    return partial(nn.init.constant_, val=value)


_INITIALIZERS = {
    "glorot_uniform": nn.init.xavier_uniform_,
    "glorot_normal": nn.init.xavier_normal_,
    "he_uniform": partial(nn.init.kaiming_uniform_, nonlinearity="relu"),
    "he_normal": partial(nn.init.kaiming_normal_, nonlinearity="relu"),
    "uniform": partial(nn.init.uniform_, a=-0.01, b=0.01),
    "normal": partial(nn.init.normal_, mean=0.0, std=0.01),
    "zeros": nn.init.zeros_,
    "ones": nn.init.ones_,
}


def get_initializer(initializer: Union[str, Initializer]) -> Initializer:
    """
    Resolve an initializer by name.

    Args:
        initializer: Registered name or in-place initializer callable

    Returns:
        In-place initializer callable
    """
    if callable(initializer):
        return initializer
    if initializer not in _INITIALIZERS:
        raise ValueError(
            f"Unknown initializer {initializer!r}, expected one of {sorted(_INITIALIZERS)}"
        )
    return _INITIALIZERS[initializer]
