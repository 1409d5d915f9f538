"""
Tests for quantization functions.

This module tests the configuration and the simulated quantizer,
comparing against a numpy reference where values are checked exactly.
"""

import math
import pytest
import torch
import numpy as np
from selfcompress.quant import (
    QuantizationConfig,
    quantize,
    ste_round,
    effective_bits,
    quantization_error,
)


def reference_quantize(x, b, e):
    """Numpy rendition of q(x, b, e)."""
    half_range = 2.0 ** (max(b, 0.0) - 1)
    scaled = np.clip(x * 2.0 ** -e, -half_range, half_range - 1)
    return np.round(scaled) * 2.0 ** e


class TestQuantizationConfig:
    """Test cases for quantization configuration."""

    def test_default_config(self):
        """Test default configuration."""
        config = QuantizationConfig()
        assert config.init_b == 16.0
        assert config.init_e == -8.0
        assert config.kernel_initializer == "glorot_uniform"
        assert config.compression_factor == 0.015

    def test_custom_config(self):
        """Test custom configuration."""
        config = QuantizationConfig(init_b=8.0, init_e=-4.0, compression_factor=0.1)
        assert config.init_b == 8.0
        assert config.init_e == -4.0
        assert config.compression_factor == 0.1

    def test_config_validation(self):
        """Test configuration validation."""
        with pytest.raises(ValueError):
            QuantizationConfig(compression_factor=-1.0)

        with pytest.raises(ValueError):
            QuantizationConfig(init_b="16")

        with pytest.raises(ValueError):
            QuantizationConfig(init_e=float("nan"))

        with pytest.raises(ValueError):
            QuantizationConfig(kernel_initializer="")

    def test_zero_bits_warns(self):
        """Zero initial bit-depth is legal but suspicious."""
        with pytest.warns(UserWarning):
            config = QuantizationConfig(init_b=-2.0)
        assert config.get_rate() == 0.0
        assert math.isinf(config.get_compression_ratio())

    def test_config_serialization(self):
        """Test configuration serialization."""
        config = QuantizationConfig(init_b=6.0, init_e=-3.0)

        config_dict = config.to_dict()
        assert config_dict["init_b"] == 6.0
        assert config_dict["init_e"] == -3.0

        config2 = QuantizationConfig.from_dict(config_dict)
        assert config2 == config

    def test_rate(self):
        """Test rate and compression ratio."""
        config = QuantizationConfig(init_b=8.0)
        assert config.get_rate() == 8.0
        assert config.get_compression_ratio() == 4.0


class TestQuantize:
    """Test cases for the simulated quantizer."""

    def test_scenario_values(self):
        """Fractional bit-depth and exponent on a handful of values."""
        x = torch.tensor([-1.0, 0.0, 0.37, 0.9999], dtype=torch.float64)
        result = quantize(x, 4.7, -4.6)

        expected = reference_quantize(x.numpy(), 4.7, -4.6)
        assert np.allclose(result.numpy(), expected)

        step = 2.0 ** -4.6
        assert result[0].item() == pytest.approx(-13 * step)
        assert result[1].item() == 0.0
        assert result[2].item() == pytest.approx(9 * step)
        assert result[2].item() == pytest.approx(0.371, abs=1e-3)
        assert result[3].item() == pytest.approx(12 * step)

    def test_matches_reference(self):
        """Test against the numpy reference on random data."""
        torch.manual_seed(0)
        x = torch.randn(256, dtype=torch.float64)
        for b, e in [(2.0, -1.0), (3.5, -2.25), (8.0, -6.0), (0.5, 0.0)]:
            result = quantize(x, b, e)
            assert np.allclose(result.numpy(), reference_quantize(x.numpy(), b, e))

    def test_large_bit_depth_is_near_identity(self):
        """With enough bits the error stays within half a step."""
        torch.manual_seed(0)
        x = torch.randn(1000, dtype=torch.float64)
        e = -10.0
        result = quantize(x, 32.0, e)
        assert torch.all(torch.abs(result - x) <= 2.0 ** e / 2 + 1e-12)

    @pytest.mark.parametrize("b", [0.0, -3.0])
    def test_zero_bit_depth_gives_zeros(self, b):
        """Bit-depths rectifying to zero collapse every value."""
        x = torch.randn(64) * 10
        result = quantize(x, b, -4.0)
        assert torch.all(result == 0)

    def test_extreme_exponents(self):
        """Tiny steps act as identity, huge steps collapse to zero."""
        torch.manual_seed(0)
        x = torch.randn(100, dtype=torch.float64)
        assert torch.allclose(quantize(x, 64.0, -40.0), x)
        assert torch.all(quantize(x, 16.0, 10.0) == 0)

    def test_error_grows_with_exponent(self):
        """Coarser steps do not decrease the average error."""
        torch.manual_seed(0)
        x = torch.rand(10000, dtype=torch.float64) * 2 - 1
        errors = [quantization_error(x, 16.0, e).item() for e in range(-12, 4)]
        for previous, current in zip(errors, errors[1:]):
            assert current >= previous - 1e-12

    def test_idempotent(self):
        """Quantizing twice equals quantizing once."""
        torch.manual_seed(0)
        x = torch.randn(4, 10, dtype=torch.float64)
        b = torch.tensor([[4.7], [2.0], [0.0], [9.3]], dtype=torch.float64)
        e = torch.tensor([[-4.6], [-1.0], [-3.0], [-7.2]], dtype=torch.float64)
        once = quantize(x, b, e)
        twice = quantize(once, b, e)
        assert torch.equal(once, twice)

    def test_per_channel_broadcasting(self):
        """One bit-depth per row broadcasts over the remaining axis."""
        x = torch.ones(3, 5)
        b = torch.tensor([[16.0], [0.0], [16.0]])
        e = torch.tensor([[-8.0], [-8.0], [0.0]])
        result = quantize(x, b, e)
        assert torch.allclose(result[0], torch.ones(5))
        assert torch.all(result[1] == 0)
        assert torch.allclose(result[2], torch.ones(5))

    def test_rounding_has_no_gradient(self):
        """Without an override the rounding blocks gradients to x."""
        x = torch.tensor([0.3, -1.2, 2.7], requires_grad=True)
        quantize(x, 8.0, -2.0).sum().backward()
        assert torch.all(x.grad == 0)

    def test_gradcheck_without_rounding(self):
        """Analytic subgradients of the clamp and scaling match finite differences."""
        # Scaled values sit well away from the clamp bounds at -4.92 and 3.92.
        x = torch.tensor([-1.75, -0.575, 0.15, 0.775, 1.5], dtype=torch.float64, requires_grad=True)
        b = torch.tensor(3.3, dtype=torch.float64, requires_grad=True)
        e = torch.tensor(-2.0, dtype=torch.float64, requires_grad=True)
        assert torch.autograd.gradcheck(
            lambda x, b, e: quantize(x, b, e, round_fn=lambda t: t), (x, b, e)
        )

    def test_gradcheck_wrt_x(self):
        """Numerical and analytic gradients agree away from rounding boundaries."""
        # x * 2**3 lands on k + 0.25, far from any rounding tie.
        x = torch.tensor([0.15625, -0.40625, 1.03125], dtype=torch.float64, requires_grad=True)
        assert torch.autograd.gradcheck(lambda x: quantize(x, 8.0, -3.0), (x,))

    def test_straight_through_gradient(self):
        """With ste_round, gradient to x is one inside the range and zero when clamped."""
        x = torch.tensor([0.1, -0.2, 5.0, -5.0], requires_grad=True)
        quantize(x, 4.0, -2.0, round_fn=ste_round).sum().backward()
        assert torch.equal(x.grad, torch.tensor([1.0, 1.0, 0.0, 0.0]))

    def test_negative_bit_depth_has_no_gradient(self):
        """The rectifier stops gradients to negative bit-depths."""
        x = torch.randn(10)
        b = torch.tensor(-1.0, requires_grad=True)
        quantize(x, b, -2.0, round_fn=ste_round).sum().backward()
        assert b.grad.item() == 0.0


class TestHelpers:
    """Test cases for helper functions."""

    def test_ste_round(self):
        """Forward rounds, backward is the identity."""
        x = torch.tensor([0.4, 0.5, 1.5, -2.6], requires_grad=True)
        y = ste_round(x)
        assert torch.equal(y, torch.round(x.detach()))
        y.sum().backward()
        assert torch.equal(x.grad, torch.ones(4))

    def test_effective_bits(self):
        """Negative bit-depths count as zero."""
        b = torch.tensor([-2.0, 0.0, 3.5])
        assert torch.equal(effective_bits(b), torch.tensor([0.0, 0.0, 3.5]))

    def test_quantization_error_reductions(self):
        """Test the supported reductions."""
        x = torch.tensor([0.3, 0.6])
        none = quantization_error(x, 8.0, 0.0, reduction="none")
        assert torch.allclose(none, torch.tensor([0.3, 0.4]))
        assert quantization_error(x, 8.0, 0.0, reduction="sum").item() == pytest.approx(0.7)
        assert quantization_error(x, 8.0, 0.0).item() == pytest.approx(0.35)

        with pytest.raises(ValueError):
            quantization_error(x, 8.0, 0.0, reduction="max")


if __name__ == "__main__":
    pytest.main([__file__])
