#!/usr/bin/env python3
"""
Tests for the graph parameter store and the lazy layer framework.

Run all tests:
    python -m pytest tests/ -v --tb=short

Run this file:
    python -m pytest tests/test_layers.py -v
"""

import sys
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def make_graph(**kwargs):
    from seqembed.graph import Graph
    return Graph(device="cpu", **kwargs)


# =============================================================================
# Graph Tests
# =============================================================================

class TestGraph:
    """Tests for the named parameter store and mode."""

    def test_param_created_once(self):
        """Asking twice for the same name returns the same tensor."""
        from seqembed.graph import initializers as inits
        graph = make_graph()
        w1 = graph.param("proj.weight", (4, 8), inits.glorot_uniform())
        w2 = graph.param("proj.weight", (4, 8), inits.zeros())
        assert w1 is w2
        assert len(graph) == 1
        assert not torch.all(w1 == 0)

    def test_param_shape_conflict(self):
        from seqembed.errors import ShapeMismatchError
        from seqembed.graph import initializers as inits
        graph = make_graph()
        graph.param("proj.weight", (4, 8), inits.zeros())
        with pytest.raises(ShapeMismatchError, match="proj.weight"):
            graph.param("proj.weight", (8, 4), inits.zeros())

    def test_param_without_initializer(self):
        graph = make_graph()
        with pytest.raises(ValueError, match="no initializer"):
            graph.param("missing", (2, 2), None)

    def test_same_seed_same_parameters(self):
        from seqembed.graph import initializers as inits
        a = make_graph(seed=7).param("w", (5, 5), inits.glorot_uniform())
        b = make_graph(seed=7).param("w", (5, 5), inits.glorot_uniform())
        assert torch.equal(a, b)

    def test_initializers(self):
        from seqembed.graph import initializers as inits
        graph = make_graph()
        u = graph.param("u", (100,), inits.uniform(-0.5, 0.5))
        assert u.min() >= -0.5 and u.max() <= 0.5

        value = torch.arange(4, dtype=torch.float32).reshape(2, 2)
        assert torch.equal(graph.param("v", (2, 2), inits.from_value(value)), value)
        with pytest.raises(ValueError, match="shape"):
            graph.param("w", (3, 2), inits.from_value(value))

    def test_load_casts_to_graph_dtype(self):
        graph = make_graph(dtype=torch.float16)
        n = graph.load({"proj.weight": torch.randn(3, 4), "proj.bias": torch.randn(4)})
        assert n == 2
        assert graph.get("proj.weight").dtype == torch.float16
        assert "proj.bias" in graph

    def test_loaded_parameter_used_by_layer(self):
        """A layer binds the loaded tensor instead of initializing one."""
        from seqembed.layers import Linear
        graph = make_graph()
        weight = torch.arange(6, dtype=torch.float32).reshape(3, 2)
        graph.load({"proj.weight": weight})
        layer = Linear(graph, "proj", dim_out=2, use_bias=False)
        out = layer(torch.ones(1, 3))
        assert torch.allclose(out, torch.tensor([[6.0, 9.0]]))

    def test_mode_scope_restores(self):
        from seqembed.graph import Mode
        graph = make_graph()
        assert graph.mode is Mode.EVAL
        with graph.mode_scope(Mode.TRAIN):
            assert graph.is_training
        assert graph.mode is Mode.EVAL


# =============================================================================
# Linear Tests
# =============================================================================

class TestLinear:
    """Tests for lazy binding and the Linear shape contract."""

    def test_output_shape(self):
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=32)
        out = layer(torch.randn(2, 7, 16))
        assert out.shape == (2, 7, 32)
        assert graph.params["proj.weight"].shape == (16, 32)
        assert graph.params["proj.bias"].shape == (32,)
        assert torch.all(graph.params["proj.bias"] == 0)

    def test_transposed_weight_shape(self):
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=32, transposed=True)
        out = layer(torch.randn(5, 16))
        assert out.shape == (5, 32)
        assert graph.params["proj.weight"].shape == (32, 16)

    def test_matches_manual_affine(self):
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=3)
        x = torch.randn(4, 6)
        out = layer(x)
        expected = x @ layer.weight + layer.bias
        assert torch.allclose(out, expected, atol=1e-6)

    def test_binding_is_idempotent(self):
        """Applying twice with the same dim_in binds each parameter once."""
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=8)
        layer(torch.randn(2, 4))
        weight = layer.weight
        n_params = len(graph)
        layer(torch.randn(9, 4))
        assert layer.weight is weight
        assert len(graph) == n_params == 2

    def test_dim_in_change_fails(self):
        from seqembed.errors import ShapeMismatchError
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=8)
        layer(torch.randn(2, 4))
        with pytest.raises(ShapeMismatchError):
            layer(torch.randn(2, 5))

    def test_no_bias(self):
        from seqembed.layers import Linear
        graph = make_graph()
        Linear(graph, "proj", dim_out=8, use_bias=False)(torch.randn(2, 4))
        assert "proj.bias" not in graph
        assert len(graph) == 1

    def test_tied_weight(self):
        """A tied output projection reuses an embedding table."""
        from seqembed.graph import initializers as inits
        from seqembed.layers import Linear
        graph = make_graph()
        table = graph.param("embedding.weight", (50, 8), inits.normal())
        head = Linear.tied(graph, "head", table, use_bias=False, transposed=True)
        assert head.dim_out == 50
        assert head.init is None

        out = head(torch.randn(3, 8))
        assert out.shape == (3, 50)
        assert head.weight is table
        assert "head.weight" not in graph

    def test_clear_keeps_tied_weight(self):
        from seqembed.graph import initializers as inits
        from seqembed.layers import Linear
        graph = make_graph()
        table = graph.param("embedding.weight", (10, 4), inits.normal())
        head = Linear.tied(graph, "head", table, transposed=True)
        head(torch.randn(2, 4))
        head.clear()
        assert head.weight is table
        assert head.bias is None

    def test_clear_then_rebind_same_graph(self):
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=4)
        layer(torch.randn(1, 3))
        weight = layer.weight
        layer.clear()
        assert layer.weight is None
        layer(torch.randn(1, 3))
        assert layer.weight is weight

    def test_invalid_dim_out(self):
        from seqembed.layers import Linear
        with pytest.raises(ValueError):
            Linear(make_graph(), "proj", dim_out=0)

    def test_half_precision_input(self):
        from seqembed.layers import Linear
        graph = make_graph()
        layer = Linear(graph, "proj", dim_out=4)
        out = layer(torch.randn(2, 3).half())
        assert out.dtype == torch.float16


# =============================================================================
# Dropout Tests
# =============================================================================

class TestDropout:
    """Tests for mode-dependent dropout."""

    def test_eval_is_identity(self):
        from seqembed.layers import Dropout
        graph = make_graph()
        x = torch.randn(4, 10)
        assert Dropout(graph, 0.5)(x) is x

    def test_train_zero_p_is_identity(self):
        from seqembed.graph import Mode
        from seqembed.layers import Dropout
        graph = make_graph(mode=Mode.TRAIN)
        x = torch.randn(4, 10)
        assert torch.equal(Dropout(graph, 0.0)(x), x)

    def test_train_drop_rate_and_scaling(self):
        from seqembed.graph import Mode
        from seqembed.layers import Dropout
        graph = make_graph(mode=Mode.TRAIN)
        out = Dropout(graph, 0.5)(torch.ones(200, 200))

        dropped = (out == 0).float().mean().item()
        assert 0.45 < dropped < 0.55
        survivors = out[out != 0]
        assert torch.allclose(survivors, torch.full_like(survivors, 2.0))

    def test_default_mask_shared_over_leading_axes(self):
        """The default mask covers the last two axes only."""
        from seqembed.graph import Mode
        from seqembed.layers import Dropout
        graph = make_graph(mode=Mode.TRAIN)
        out = Dropout(graph, 0.5)(torch.ones(3, 20, 20))
        assert torch.equal(out[0], out[1])
        assert torch.equal(out[1], out[2])

    def test_fixed_mask_shape(self):
        from seqembed.graph import Mode
        from seqembed.layers import Dropout
        graph = make_graph(mode=Mode.TRAIN)
        out = Dropout(graph, 0.5, mask_shape=(1, 50))(torch.ones(10, 50))
        assert torch.equal(out[0], out[9])

    def test_invalid_probability(self):
        from seqembed.layers import Dropout
        with pytest.raises(ValueError):
            Dropout(make_graph(), 1.0)


class TestLinearReluDropout:
    """Tests for the fused layer in each mode."""

    def _reference(self, graph, x):
        from seqembed.layers import Linear
        # Same name: binds the fused layer's parameters
        return torch.relu(Linear(graph, "ffn", dim_out=16)(x))

    def test_eval_is_relu_linear(self):
        from seqembed.layers import LinearReluDropout
        graph = make_graph()
        layer = LinearReluDropout(graph, "ffn", dim_out=16, p=0.5)
        x = torch.randn(4, 8)
        out = layer(x)
        assert torch.allclose(out, self._reference(graph, x))
        assert (out >= 0).all()

    def test_train_zero_p_is_relu(self):
        from seqembed.graph import Mode
        from seqembed.layers import LinearReluDropout
        graph = make_graph(mode=Mode.TRAIN)
        layer = LinearReluDropout(graph, "ffn", dim_out=16, p=0.0)
        x = torch.randn(4, 8)
        assert torch.allclose(layer(x), self._reference(graph, x))

    def test_train_drops_and_scales(self):
        from seqembed.graph import Mode
        from seqembed.layers import LinearReluDropout
        graph = make_graph(mode=Mode.TRAIN)
        layer = LinearReluDropout(graph, "ffn", dim_out=16, p=0.5)
        x = torch.randn(64, 8)
        out = layer(x)
        reference = self._reference(graph, x)

        kept = out != 0
        assert torch.allclose(out[kept], 2.0 * reference[kept], atol=1e-5)
        assert (out[reference == 0] == 0).all()

    def test_fixed_mask_shape(self):
        """A (1, 16) mask drops the same columns in every row."""
        from seqembed.graph import Mode
        from seqembed.layers import LinearReluDropout
        graph = make_graph(mode=Mode.TRAIN)
        layer = LinearReluDropout(graph, "ffn", dim_out=16, p=0.5, mask_shape=(1, 16))
        x = torch.randn(10, 8)
        out = layer(x)
        reference = self._reference(graph, x)
        assert out.shape == (10, 16)

        # Columns dropped by the mask are zero in every row
        dropped = (out == 0) & (reference != 0)
        dropped_cols = dropped.any(dim=0)
        assert (out[:, dropped_cols] == 0).all()

        kept = out != 0
        assert torch.allclose(out[kept], 2.0 * reference[kept], atol=1e-5)

    def test_parameters_shared_with_linear(self):
        from seqembed.layers import LinearReluDropout
        graph = make_graph()
        layer = LinearReluDropout(graph, "ffn", dim_out=16, p=0.1)
        layer(torch.randn(2, 8))
        assert set(graph.params) == {"ffn.weight", "ffn.bias"}
        assert layer.weight is graph.params["ffn.weight"]
        assert layer.dim_out == 16


# =============================================================================
# Normalization Tests
# =============================================================================

class TestNorms:
    """Tests for LayerNorm and RMSNorm."""

    def test_layer_norm_statistics(self):
        from seqembed.layers import LayerNorm
        graph = make_graph()
        out = LayerNorm(graph, "norm")(torch.randn(4, 6, 32) * 5 + 3)
        assert torch.allclose(out.mean(-1), torch.zeros(4, 6), atol=1e-5)
        assert torch.allclose(out.std(-1, unbiased=False), torch.ones(4, 6), atol=1e-3)
        assert graph.params["norm.weight"].shape == (32,)
        assert graph.params["norm.bias"].shape == (32,)

    def test_layer_norm_without_affine(self):
        from seqembed.layers import LayerNorm
        graph = make_graph()
        LayerNorm(graph, "norm", elementwise_affine=False)(torch.randn(2, 8))
        assert len(graph) == 0

    def test_rms_norm(self):
        from seqembed.layers import RMSNorm
        graph = make_graph()
        out = RMSNorm(graph, "norm")(torch.randn(3, 16) * 4)
        rms = out.pow(2).mean(-1).sqrt()
        assert torch.allclose(rms, torch.ones(3), atol=1e-3)
        assert set(graph.params) == {"norm.weight"}

    def test_half_precision_preserved(self):
        from seqembed.layers import LayerNorm, RMSNorm
        graph = make_graph(dtype=torch.float16)
        x = (torch.randn(2, 16) * 100).half()
        assert LayerNorm(graph, "ln")(x).dtype == torch.float16
        assert RMSNorm(graph, "rms")(x).dtype == torch.float16
        assert torch.isfinite(LayerNorm(graph, "ln")(x)).all()

    def test_norm_by_name(self):
        from seqembed.layers import LayerNorm, RMSNorm, norm_by_name
        graph = make_graph()
        assert isinstance(norm_by_name(graph, "a", "layer"), LayerNorm)
        assert isinstance(norm_by_name(graph, "b", "rms"), RMSNorm)
        with pytest.raises(ValueError):
            norm_by_name(graph, "c", "batch")


# =============================================================================
# Mask & Activation Tests
# =============================================================================

class TestMasks:
    """Tests for the additive attention mask."""

    def test_shape_and_values(self):
        from seqembed.layers import transposed_log_mask
        mask = torch.tensor([[1.0, 1.0, 0.0], [1.0, 0.0, 0.0]]).unsqueeze(-1)
        log_mask = transposed_log_mask(mask, num_heads=2)
        assert log_mask.shape == (1, 4, 1, 3)

        # Heads of one sentence are adjacent
        assert torch.equal(log_mask[0, 0], log_mask[0, 1])
        assert torch.equal(log_mask[0, 2], log_mask[0, 3])
        assert log_mask[0, 0, 0, 0] == 0 and log_mask[0, 0, 0, 2] < -1e6
        assert log_mask[0, 2, 0, 1] < -1e6

    def test_float32_factor_floor(self):
        from seqembed.layers import transposed_log_mask
        log_mask = transposed_log_mask(torch.zeros(1, 2, 1), num_heads=1)
        assert torch.all(log_mask == -99999999.0)

    def test_half_precision_is_finite(self):
        from seqembed.layers import transposed_log_mask
        mask = torch.tensor([[1.0, 0.0, 0.0, 0.0]]).unsqueeze(-1).half()
        log_mask = transposed_log_mask(mask, num_heads=4)
        assert log_mask.dtype == torch.float16
        assert torch.isfinite(log_mask).all()
        assert log_mask.min().item() == pytest.approx(torch.finfo(torch.float16).min / 2)

    def test_none_mask(self):
        from seqembed.layers import transposed_log_mask
        assert transposed_log_mask(None, num_heads=8) is None

    def test_swap_time_batch(self):
        from seqembed.layers import swap_time_batch
        assert swap_time_batch(torch.zeros(5, 3, 8)).shape == (1, 3, 5, 8)


class TestActivations:
    """Tests for the activation family and Sequential composition."""

    def test_by_name(self):
        from seqembed.layers import GELU, Swish, activation_by_name
        graph = make_graph()
        assert isinstance(activation_by_name(graph, "gelu"), GELU)
        assert isinstance(activation_by_name(graph, "swish"), Swish)
        with pytest.raises(ValueError, match="Unknown activation"):
            activation_by_name(graph, "softplus")

    def test_values(self):
        from seqembed.layers import ReLU, Sigmoid, Tanh
        graph = make_graph()
        x = torch.tensor([-1.0, 0.0, 2.0])
        assert torch.equal(ReLU(graph)(x), torch.tensor([0.0, 0.0, 2.0]))
        assert torch.allclose(Tanh(graph)(x), torch.tanh(x))
        assert Sigmoid(graph)(torch.zeros(1)).item() == pytest.approx(0.5)

    def test_sequential_and_protocol(self):
        from seqembed.layers import Linear, ReLU, Sequential, UnaryLayer
        graph = make_graph()
        stack = Sequential(graph, "mlp", [
            Linear(graph, "mlp.0", dim_out=8),
            ReLU(graph),
            Linear(graph, "mlp.1", dim_out=2),
        ])
        assert isinstance(stack, UnaryLayer)
        assert stack(torch.randn(3, 4)).shape == (3, 2)
        assert len(stack) == 3
        stack.clear()
        assert stack.layers[0].weight is None
