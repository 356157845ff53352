"""Tests for jax_slicemap.autodiff module."""

from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from jax_slicemap.autodiff import (
    GradientTape,
    StaticSliceMapper,
    ThreadedSliceMapper,
    gradient_check,
    map_cols,
    map_cols_bwd,
    map_cols_fwd,
    map_cols_parallel,
    map_cols_static,
    record_columns,
)
from jax_slicemap.core import DimensionError, ShapeError, WorkerError

A = jnp.array([[1.0, -2.0, 0.5], [0.3, 0.7, -1.1]])


def layer(c):
    return jnp.tanh(A @ c)


def sum_of_squares(c):
    return jnp.sum(c**2)


@pytest.fixture
def matrix():
    return jnp.arange(1.0, 13.0).reshape(3, 4, order="F")


@pytest.fixture
def random_matrix():
    return jax.random.normal(jax.random.PRNGKey(42), (3, 6))


def pullback(mapper, x):
    _, vjp_fn = jax.vjp(mapper, x)
    return vjp_fn


class TestMapCols:
    """Tests for map_cols (dynamic wrapper)."""

    def test_square_plus_two(self):
        m = jnp.arange(1, 13).reshape(3, 4, order="F")
        result = map_cols(lambda c: 2 + c**2, m)
        for i in range(4):
            assert jnp.array_equal(result[:, i], 2 + m[:, i] ** 2)

    def test_sum_of_squares_gradient(self, matrix):
        grad = jax.grad(lambda m: jnp.sum(map_cols(sum_of_squares, m)))(matrix)
        assert jnp.allclose(grad, 2 * matrix)

    def test_gradient_weighted_by_upstream(self, random_matrix):
        g = jax.random.normal(jax.random.PRNGKey(1), (2, 6))
        (grad,) = pullback(lambda m: map_cols(layer, m), random_matrix)(g)
        for i in range(6):
            (expected,) = jax.vjp(layer, random_matrix[:, i])[1](g[:, i])
            assert jnp.allclose(grad[:, i], expected, atol=1e-6)

    @staticmethod
    def lengthening():
        calls = []

        def fn(c):
            calls.append(None)
            # length 3 on the first column, 4 on every later one
            return c[:3] if len(calls) == 1 else jnp.concatenate([c, c[:1]])

        return fn

    def test_shape_error(self, matrix):
        with pytest.raises(ShapeError):
            map_cols(self.lengthening(), matrix)

    def test_shape_error_in_forward_pass(self, matrix):
        with pytest.raises(ShapeError):
            map_cols_fwd(self.lengthening(), matrix)

    def test_shape_error_under_grad(self, matrix):
        with pytest.raises(ShapeError):
            jax.grad(lambda m: jnp.sum(map_cols(self.lengthening(), m)))(matrix)

    def test_not_a_matrix(self):
        with pytest.raises(DimensionError):
            map_cols(jnp.sin, jnp.ones((2, 2, 2)))

    def test_under_jit(self, random_matrix):
        loss = lambda m: jnp.sum(map_cols(layer, m) ** 2)  # noqa: E731
        assert jnp.allclose(jax.jit(jax.grad(loss))(random_matrix), jax.grad(loss)(random_matrix))

    def test_zero_columns(self):
        x = jnp.zeros((3, 0))
        assert map_cols(layer, x).shape == (2, 0)
        grad = jax.grad(lambda m: jnp.sum(map_cols(layer, m)))(x)
        assert grad.shape == (3, 0)

    def test_gradient_check(self, random_matrix):
        assert gradient_check(lambda m: map_cols(layer, m), random_matrix)


class TestGradientTape:
    """Tests for map_cols_fwd / map_cols_bwd and GradientTape."""

    def test_one_record_per_column(self, random_matrix):
        out, tape = map_cols_fwd(layer, random_matrix)
        assert out.shape == (2, 6)
        assert len(tape) == 6
        assert [r.index for r in tape.records] == list(range(6))

    def test_forward_matches_map_cols(self, random_matrix):
        out, _ = map_cols_fwd(layer, random_matrix)
        assert jnp.allclose(out, map_cols(layer, random_matrix))

    def test_backward(self, matrix):
        out, tape = map_cols_fwd(sum_of_squares, matrix)
        grad = map_cols_bwd(tape, jnp.ones_like(out))
        assert jnp.allclose(grad, 2 * matrix)

    def test_pytree_roundtrip(self, random_matrix):
        out, tape = map_cols_fwd(layer, random_matrix)
        leaves, treedef = jax.tree_util.tree_flatten(tape)
        rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
        g = jnp.ones_like(out)
        assert jnp.allclose(rebuilt.backward(g), tape.backward(g))

    def test_empty_tape(self):
        tape = GradientTape(input_shape=(3, 0), dtype=jnp.float32)
        assert tape.backward(jnp.zeros((2, 0))).shape == (3, 0)

    def test_record_passes_value_through(self):
        tape = GradientTape(input_shape=(1, 1))
        value = jnp.array([1.0])
        assert tape.record(value, lambda g: (g,)) is value
        assert len(tape) == 1

    def test_forward_seals_tape(self, random_matrix):
        _, tape = map_cols_fwd(layer, random_matrix)
        assert tape.sealed
        assert isinstance(tape.records, tuple)
        with pytest.raises(RuntimeError):
            tape.record(jnp.zeros(2), lambda g: (g,))
        assert len(tape) == 6

    def test_rebuilt_tape_is_sealed(self, random_matrix):
        _, tape = map_cols_fwd(layer, random_matrix)
        leaves, treedef = jax.tree_util.tree_flatten(tape)
        assert jax.tree_util.tree_unflatten(treedef, leaves).sealed

    def test_record_columns_custom_recorder(self, random_matrix):
        class ListRecorder:
            def __init__(self):
                self.pairs = []

            def record(self, value, backward):
                self.pairs.append((value, backward))
                return value

        recorder = ListRecorder()
        out = record_columns(layer, random_matrix, recorder)
        assert jnp.allclose(out, map_cols(layer, random_matrix))
        assert len(recorder.pairs) == 6
        value, backward = recorder.pairs[4]
        assert jnp.allclose(value, layer(random_matrix[:, 4]))
        (grad,) = backward(jnp.ones(2))
        (expected,) = jax.vjp(layer, random_matrix[:, 4])[1](jnp.ones(2))
        assert jnp.allclose(grad, expected)


class TestMapColsStatic:
    """Tests for map_cols_static (Jacobian-based wrapper)."""

    def test_forward_matches_dynamic(self, random_matrix):
        assert jnp.allclose(
            map_cols_static(layer, random_matrix, 3),
            map_cols(layer, random_matrix),
            atol=1e-6,
        )

    def test_sum_of_squares_all_ones(self, matrix):
        (grad,) = pullback(lambda m: map_cols_static(sum_of_squares, m, 3), matrix)(jnp.ones((1, 4)))
        assert jnp.allclose(grad, 2 * matrix)

    def test_gradient_matches_dynamic(self, random_matrix):
        g = jax.random.normal(jax.random.PRNGKey(7), (2, 6))
        (dynamic,) = pullback(lambda m: map_cols(layer, m), random_matrix)(g)
        (static,) = pullback(lambda m: map_cols_static(layer, m, 3), random_matrix)(g)
        assert jnp.allclose(dynamic, static, atol=1e-5)

    def test_dimension_error_before_call(self, matrix):
        calls = []

        def fn(c):
            calls.append(c)
            return c

        with pytest.raises(DimensionError):
            map_cols_static(fn, matrix, 2)
        assert calls == []

    def test_under_jit(self, random_matrix):
        loss = lambda m: jnp.sum(map_cols_static(layer, m, 3) ** 2)  # noqa: E731
        assert jnp.allclose(jax.jit(jax.grad(loss))(random_matrix), jax.grad(loss)(random_matrix))

    def test_zero_columns(self):
        x = jnp.zeros((3, 0))
        assert map_cols_static(layer, x, 3).shape == (2, 0)
        assert jax.grad(lambda m: jnp.sum(map_cols_static(layer, m, 3)))(x).shape == (3, 0)

    def test_reverse_mode_jacobian_provider(self, random_matrix):
        g = jnp.ones((2, 6))
        fwd_mapper = StaticSliceMapper(3)
        rev_mapper = StaticSliceMapper(3, jacobian=jax.jacrev)
        (by_fwd,) = pullback(lambda m: fwd_mapper(layer, m), random_matrix)(g)
        (by_rev,) = pullback(lambda m: rev_mapper(layer, m), random_matrix)(g)
        assert jnp.allclose(by_fwd, by_rev, atol=1e-6)

    def test_jacobians(self, random_matrix):
        jac = StaticSliceMapper(3).jacobians(layer, random_matrix)
        assert jac.shape == (6, 2, 3)
        assert jnp.allclose(jac[2], jax.jacfwd(layer)(random_matrix[:, 2]))

    def test_mapper_is_specialised(self, random_matrix):
        mapper = StaticSliceMapper(3)
        mapper(layer, random_matrix)
        with pytest.raises(DimensionError):
            mapper(layer, jnp.ones((4, 2)))

    def test_invalid_slice_length(self):
        with pytest.raises(ValueError):
            StaticSliceMapper(0)

    def test_gradient_check(self, random_matrix):
        assert gradient_check(lambda m: map_cols_static(layer, m, 3), random_matrix)


class TestMapColsParallel:
    """Tests for map_cols_parallel (threaded Jacobian-based wrapper)."""

    @pytest.mark.parametrize("workers", [1, 2, 4])
    def test_forward_matches_sequential(self, random_matrix, workers):
        assert jnp.array_equal(
            map_cols_parallel(layer, random_matrix, 3, workers=workers),
            map_cols(layer, random_matrix),
        )

    def test_sum_of_squares_all_ones(self, matrix):
        (grad,) = pullback(lambda m: map_cols_parallel(sum_of_squares, m, 3, 2), matrix)(jnp.ones((1, 4)))
        assert jnp.allclose(grad, 2 * matrix)

    def test_gradient_worker_count_invariance(self, random_matrix):
        g = jax.random.normal(jax.random.PRNGKey(3), (2, 6))
        grads = [
            pullback(lambda m, k=k: map_cols_parallel(layer, m, 3, k), random_matrix)(g)[0]
            for k in (1, 2, 4)
        ]
        assert jnp.array_equal(grads[0], grads[1])
        assert jnp.array_equal(grads[0], grads[2])

    def test_gradient_matches_static(self, random_matrix):
        g = jax.random.normal(jax.random.PRNGKey(5), (2, 6))
        (static,) = pullback(lambda m: map_cols_static(layer, m, 3), random_matrix)(g)
        (threaded,) = pullback(lambda m: map_cols_parallel(layer, m, 3, 3), random_matrix)(g)
        assert jnp.allclose(static, threaded, atol=1e-5)

    def test_under_jit_falls_back(self, random_matrix):
        loss = lambda m: jnp.sum(map_cols_parallel(layer, m, 3, 2) ** 2)  # noqa: E731
        expected = jax.grad(lambda m: jnp.sum(map_cols_static(layer, m, 3) ** 2))(random_matrix)
        assert jnp.allclose(jax.jit(loss)(random_matrix), loss(random_matrix), atol=1e-5)
        assert jnp.allclose(jax.jit(jax.grad(loss))(random_matrix), expected, atol=1e-5)

    def test_worker_error(self, matrix):
        def flaky(c):
            if float(c[0]) > 6:
                raise ArithmeticError("bad column")
            return c

        with pytest.raises(WorkerError) as exc_info:
            map_cols_parallel(flaky, matrix, 3, workers=2)
        assert isinstance(exc_info.value.original, ArithmeticError)

    def test_dimension_error(self, matrix):
        with pytest.raises(DimensionError):
            map_cols_parallel(layer, matrix, 5, workers=2)

    def test_threaded_mapper_repr(self):
        assert repr(ThreadedSliceMapper(3, workers=2)) == "ThreadedSliceMapper(slice_length=3, workers=2)"

    def test_gradient_check(self, random_matrix):
        assert gradient_check(lambda m: map_cols_parallel(layer, m, 3, 2), random_matrix)


class TestAgreement:
    """Cross-mapper properties."""

    @given(
        st.integers(min_value=1, max_value=4),
        st.integers(min_value=0, max_value=7),
        st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=10, deadline=None)
    def test_all_mappers_agree(self, d, batch, workers):
        """Property: dynamic, static and threaded mappers agree on values and gradients."""
        x = jax.random.normal(jax.random.PRNGKey(d + 10 * batch), (d, batch))

        def fn(c):
            return jnp.sin(c) * jnp.sum(c**2)

        dynamic = map_cols(fn, x)
        assert jnp.allclose(dynamic, map_cols_static(fn, x, d), atol=1e-5)
        assert jnp.allclose(dynamic, map_cols_parallel(fn, x, d, workers), atol=1e-5)

        g = jnp.ones((d, batch))
        (g_dyn,) = pullback(lambda m: map_cols(fn, m), x)(g)
        (g_static,) = pullback(lambda m: map_cols_static(fn, m, d), x)(g)
        (g_threaded,) = pullback(lambda m: map_cols_parallel(fn, m, d, workers), x)(g)
        assert jnp.allclose(g_dyn, g_static, atol=1e-4)
        assert jnp.allclose(g_static, g_threaded, atol=1e-4)
