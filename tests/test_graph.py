"""Tests for graph evaluation and Jacobian composition."""

import gc
import weakref

import numpy as np
import pytest

import paragraph as pg
from paragraph import Derivative, GraphBuilder, GraphError, Tensor, TensorFunction


class Counting(TensorFunction):
    """Wraps a function and counts how often it is asked for values and gradients."""

    def __init__(self, inner):
        self.inner = inner
        self.value_calls = 0
        self.gradient_calls = 0

    def value(self, inputs):
        self.value_calls += 1
        return self.inner.value(inputs)

    def gradient(self, inputs):
        self.gradient_calls += 1
        return self.inner.gradient(inputs)


class Scale(TensorFunction):
    """y = 2x, remembering a weak reference to every value it produced."""

    def __init__(self, produced):
        self.produced = produced

    def value(self, inputs):
        out = Tensor(inputs[0].dimensionalities, 2.0 * inputs[0].data)
        self.produced.append(weakref.ref(out))
        return out

    def gradient(self, inputs):
        v = self.value(inputs)
        ident = Tensor.identity_jacobian(v.dimensionalities)
        return Derivative(v, [Tensor(ident.dimensionalities, 2.0 * ident.data)])


class Probe(TensorFunction):
    """Identity function that records which earlier values are still alive when it runs."""

    def __init__(self, produced):
        self.produced = produced
        self.alive = None

    def _check(self):
        gc.collect()
        self.alive = [ref() is not None for ref in self.produced]

    def value(self, inputs):
        self._check()
        return inputs[0]

    def gradient(self, inputs):
        self._check()
        return Derivative(inputs[0], [Tensor.identity_jacobian(inputs[0].dimensionalities)])


def w_x_plus_b():
    gb = GraphBuilder()
    w = gb.add_variable("w")
    x = gb.add_variable("x")
    b = gb.add_variable("b")
    wx = gb.add_operation("wx", pg.ChainMultiplication(1), [w, x])
    out = gb.add_operation("wx_plus_b", pg.Add(), [wx, b])
    return gb.build_graph(), (w, x, b), out


class TestValue:
    """Tests for Graph.value."""

    def test_variable_output_returns_input(self):
        """Test a variable evaluates to its input slot."""
        graph, (w, x, b), _ = w_x_plus_b()
        inputs = graph.create_variable_values({x: [1.0, 2.0]})
        assert graph.value(x, inputs) is inputs[x.index]

    def test_w_x_plus_b(self, random_tensor, assert_tensors_close):
        """Test a small affine map."""
        graph, (w, x, b), out = w_x_plus_b()
        wv, xv, bv = random_tensor(3, 4), random_tensor(4), random_tensor(3)
        inputs = graph.create_variable_values({w: wv, x: xv, b: bv})
        expected = pg.from_numpy(wv.numpy() @ xv.numpy() + bv.numpy())
        assert_tensors_close(graph.value(out, inputs), expected)

    def test_only_dependencies_are_evaluated(self):
        """Test operations off the output's path are never run."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        y = gb.add_variable("y")
        used = Counting(pg.Negative())
        unused = Counting(pg.Negative())
        a = gb.add_operation("a", used, [x])
        gb.add_operation("b", unused, [y])
        graph = gb.build_graph()

        # y is never read, so it may stay unset
        inputs = graph.create_variable_values({x: [3.0]})
        assert graph.value(a, inputs).data[0] == -3.0
        assert used.value_calls == 1
        assert unused.value_calls == 0

    def test_diamond_is_evaluated_once_per_node(self):
        """Test a shared intermediate is computed once and read twice."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        shared = Counting(pg.Sigmoid())
        s = gb.add_operation("s", shared, [x])
        left = gb.add_operation("left", pg.Negative(), [s])
        right = gb.add_operation("right", pg.Log(), [s])
        out = gb.add_operation("out", pg.Add(), [left, right])
        graph = gb.build_graph()

        inputs = graph.create_variable_values({x: [0.5, -1.0]})
        sig = 1.0 / (1.0 + np.exp(-np.array([0.5, -1.0])))
        np.testing.assert_allclose(graph.value(out, inputs).data, -sig + np.log(sig))
        assert shared.value_calls == 1

    def test_repeated_dependency(self):
        """Test an operation consuming the same intermediate twice."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        neg = gb.add_operation("neg", pg.Negative(), [x])
        square = gb.add_operation("square", pg.ElementWiseMultiplication(), [neg, neg])
        graph = gb.build_graph()
        inputs = graph.create_variable_values({x: [3.0, -2.0]})
        np.testing.assert_array_equal(graph.value(square, inputs).data, [9.0, 4.0])

    def test_intermediates_released_after_last_consumer(self):
        """Test an intermediate is dropped once its most recent consumer ran."""
        produced = []
        gb = GraphBuilder()
        x = gb.add_variable("x")
        a = gb.add_operation("a", Scale(produced), [x])
        b = gb.add_operation("b", Scale(produced), [a])
        probe = Probe(produced)
        gb.add_operation("probe", probe, [b])
        graph = gb.build_graph()

        inputs = graph.create_variable_values({x: [1.0, 2.0]})
        result = graph.value(pg.Operation(2), inputs)
        np.testing.assert_array_equal(result.data, [4.0, 8.0])
        # a was last read by b; b is the probe's own argument
        assert probe.alive == [False, True]

    def test_unset_input_on_path_raises(self):
        """Test a missing input slot is reported by variable name."""
        graph, (w, x, b), out = w_x_plus_b()
        inputs = graph.create_variable_values({w: [[1.0]], x: [1.0]})
        with pytest.raises(GraphError, match="'b'"):
            graph.value(out, inputs)

    def test_foreign_node_raises(self):
        """Test nodes outside the graph are rejected."""
        graph, _, _ = w_x_plus_b()
        with pytest.raises(GraphError):
            graph.value(pg.Operation(7), [None, None, None])

    def test_function_shape_error_propagates(self):
        """Test errors raised by a function reach the caller."""
        graph, (w, x, b), out = w_x_plus_b()
        inputs = graph.create_variable_values({w: pg.zeros(2, 3), x: pg.zeros(4), b: pg.zeros(2)})
        with pytest.raises(GraphError):
            graph.value(out, inputs)


class TestPartialGradient:
    """Tests for Graph.partial_gradient."""

    def test_scalar_w_x_plus_b_is_exact(self):
        """Test d(wx+b) on scalars: dw = x, dx = w, db = 1."""
        gb = GraphBuilder()
        w = gb.add_variable("w")
        x = gb.add_variable("x")
        b = gb.add_variable("b")
        wx = gb.add_operation("wx", pg.ChainMultiplication(0), [w, x])
        out = gb.add_operation("wx_plus_b", pg.Add(), [wx, b])
        graph = gb.build_graph()

        inputs = graph.create_variable_values({w: 1.5, x: -0.25, b: 3.0})
        derivative = graph.partial_gradient(out, [w, x, b], inputs)

        assert derivative.value.dimensionalities == ()
        assert derivative.value.item() == pytest.approx(1.5 * -0.25 + 3.0, abs=1e-15)
        dw, dx, db = derivative.jacobians
        assert all(j.dimensionalities == () for j in derivative.jacobians)
        assert dw.item() == pytest.approx(-0.25, abs=1e-15)
        assert dx.item() == pytest.approx(1.5, abs=1e-15)
        assert db.item() == pytest.approx(1.0, abs=1e-15)

    def test_tensor_w_x_plus_b_finite_differences(self, random_tensor):
        """Test first order changes match contract(dv, J, rank(v))."""
        gb = GraphBuilder()
        w = gb.add_variable("w")
        x = gb.add_variable("x")
        b = gb.add_variable("b")
        wx = gb.add_operation("wx", pg.ChainMultiplication(1), [w, x])
        out = gb.add_operation("wx_plus_b", pg.Add(), [wx, b])
        graph = gb.build_graph()

        values = {w: random_tensor(2, 3, 5), x: random_tensor(5, 7), b: random_tensor(2, 3, 7)}
        inputs = graph.create_variable_values(values)
        derivative = graph.partial_gradient(out, [w, x, b], inputs)
        assert derivative.value.dimensionalities == (2, 3, 7)

        eps = 1e-6
        for variable, jacobian in zip((w, x, b), derivative.jacobians):
            base = values[variable]
            assert jacobian.dimensionalities == base.dimensionalities + (2, 3, 7)
            step = random_tensor(*base.dimensionalities)
            step = Tensor(step.dimensionalities, eps * step.data)
            moved = list(inputs)
            moved[variable.index] = base + step
            actual = graph.value(out, moved).data - derivative.value.data
            predicted = Tensor.contract(step, jacobian, step.ndim).data
            np.testing.assert_allclose(actual, predicted, atol=10 * eps ** 2)

    def test_unreachable_output_has_exact_zero_jacobian(self):
        """Test operations outside the influenced set are never differentiated."""
        gb = GraphBuilder()
        w = gb.add_variable("w")
        x = gb.add_variable("x")
        c = gb.add_variable("c")
        wx_fn = Counting(pg.ElementWiseMultiplication())
        sig_fn = Counting(pg.Sigmoid())
        sum_fn = Counting(pg.Add())
        wx = gb.add_operation("wx", wx_fn, [w, x])
        sig = gb.add_operation("sig", sig_fn, [c])
        out = gb.add_operation("out", sum_fn, [wx, sig])
        graph = gb.build_graph()
        inputs = graph.create_variable_values({w: [1.0, 2.0], x: [3.0, 4.0], c: [0.0, 1.0]})

        derivative = graph.partial_gradient(wx, [c], inputs)
        assert derivative.jacobians[0].dimensionalities == (2, 2)
        assert not derivative.jacobians[0].data.any()
        assert wx_fn.gradient_calls == 0
        assert wx_fn.value_calls == 1

        derivative = graph.partial_gradient(out, [c], inputs)
        s = 1.0 / (1.0 + np.exp(-np.array([0.0, 1.0])))
        np.testing.assert_allclose(derivative.jacobians[0].numpy(), np.diag(s * (1.0 - s)))
        assert wx_fn.gradient_calls == 0
        assert sig_fn.gradient_calls == 1
        assert sum_fn.gradient_calls == 1

    def test_variable_output(self):
        """Test identity for the output itself and zeros for the rest."""
        graph, (w, x, b), _ = w_x_plus_b()
        inputs = graph.create_variable_values({w: pg.zeros(2, 3), x: [1.0, 2.0, 3.0]})
        derivative = graph.partial_gradient(x, [x, w], inputs)
        assert derivative.value is inputs[x.index]
        np.testing.assert_array_equal(derivative.jacobians[0].numpy(), np.eye(3))
        assert derivative.jacobians[1].dimensionalities == (2, 3, 3)
        assert not derivative.jacobians[1].data.any()

    def test_empty_moving_variables(self):
        """Test no moving variables gives the value and no Jacobians."""
        graph, (w, x, b), out = w_x_plus_b()
        inputs = graph.create_variable_values({w: [[2.0]], x: [3.0], b: [1.0]})
        derivative = graph.partial_gradient(out, [], inputs)
        assert derivative.value.data[0] == 7.0
        assert derivative.jacobians == []

    def test_repeated_moving_variable(self):
        """Test a moving variable listed twice gets two equal Jacobians."""
        graph, (w, x, b), out = w_x_plus_b()
        inputs = graph.create_variable_values({w: [[2.0]], x: [3.0], b: [1.0]})
        first, second = graph.partial_gradient(out, [x, x], inputs).jacobians
        np.testing.assert_array_equal(first.data, second.data)
        assert first.data[0] == 2.0

    def test_diamond_sums_both_paths(self):
        """Test d(x * x) / dx == 2x through a shared intermediate."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        neg = gb.add_operation("neg", pg.Negative(), [x])
        square = gb.add_operation("square", pg.ElementWiseMultiplication(), [neg, neg])
        graph = gb.build_graph()
        inputs = graph.create_variable_values({x: [3.0, -2.0]})
        derivative = graph.partial_gradient(square, [x], inputs)
        np.testing.assert_allclose(derivative.jacobians[0].numpy(), np.diag([6.0, -4.0]))

    def test_variable_used_directly_and_through_operation(self):
        """Test direct and indirect contributions of the same variable add up."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        s = gb.add_operation("s", pg.Sigmoid(), [x])
        out = gb.add_operation("out", pg.Add(), [x, s])
        graph = gb.build_graph()
        xv = np.array([0.3, -0.7])
        inputs = graph.create_variable_values({x: xv})
        sig = 1.0 / (1.0 + np.exp(-xv))
        derivative = graph.partial_gradient(out, [x], inputs)
        np.testing.assert_allclose(derivative.jacobians[0].numpy(), np.diag(1.0 + sig * (1.0 - sig)))

    def test_intermediates_released(self):
        """Test values are dropped after the most recent consumer while differentiating."""
        produced = []
        gb = GraphBuilder()
        x = gb.add_variable("x")
        a = gb.add_operation("a", Scale(produced), [x])
        b = gb.add_operation("b", Scale(produced), [a])
        probe = Probe(produced)
        out = gb.add_operation("probe", probe, [b])
        graph = gb.build_graph()

        inputs = graph.create_variable_values({x: [1.0]})
        derivative = graph.partial_gradient(out, [x], inputs)
        assert derivative.jacobians[0].item() == 4.0
        assert probe.alive == [False, True]

    def test_moving_variable_must_be_variable(self):
        """Test operations cannot be moving variables."""
        graph, (w, x, b), out = w_x_plus_b()
        inputs = graph.create_variable_values({w: [[2.0]], x: [3.0], b: [1.0]})
        with pytest.raises(GraphError):
            graph.partial_gradient(out, [pg.Operation(0)], inputs)
        with pytest.raises(GraphError):
            graph.partial_gradient(out, [pg.Variable(9)], inputs)

    def test_unset_moving_variable_raises(self):
        """Test a moving variable needs an input value."""
        gb = GraphBuilder()
        x = gb.add_variable("x")
        unused = gb.add_variable("unused")
        op = gb.add_operation("neg", pg.Negative(), [x])
        graph = gb.build_graph()
        inputs = graph.create_variable_values({x: [3.0]})
        with pytest.raises(GraphError, match="'unused'"):
            graph.partial_gradient(op, [unused], inputs)

    def test_wrong_jacobian_count_raises(self):
        """Test a function returning too few Jacobians is reported."""
        class Broken(TensorFunction):
            def value(self, inputs):
                return inputs[0]

            def gradient(self, inputs):
                return Derivative(inputs[0], [])

        gb = GraphBuilder()
        x = gb.add_variable("x")
        op = gb.add_operation("broken", Broken(), [x])
        graph = gb.build_graph()
        with pytest.raises(GraphError, match="broken"):
            graph.partial_gradient(op, [x], graph.create_variable_values({x: [1.0]}))


class TestDensification:
    """Tests for create_variable_values and name lookups."""

    def test_create_variable_values(self):
        """Test unmapped slots stay None and values become tensors."""
        graph, (w, x, b), _ = w_x_plus_b()
        inputs = graph.create_variable_values({x: [1.0, 2.0]})
        assert len(inputs) == 3
        assert inputs[w.index] is None and inputs[b.index] is None
        assert isinstance(inputs[x.index], Tensor)

    def test_operation_key_raises(self):
        """Test only variables may be mapped."""
        graph, _, out = w_x_plus_b()
        with pytest.raises(GraphError, match="variables only"):
            graph.create_variable_values({out: [1.0]})

    def test_out_of_range_key_raises(self):
        """Test variable indices are range checked."""
        graph, _, _ = w_x_plus_b()
        with pytest.raises(GraphError, match="invalid variable index"):
            graph.create_variable_values({pg.Variable(3): [1.0]})

    def test_names(self):
        """Test names by node and nodes by name."""
        graph, (w, x, b), out = w_x_plus_b()
        assert graph.variable_name(x) == "x"
        assert graph.operation_name(out) == "wx_plus_b"
        assert graph.variable_by_name("b") == b
        assert graph.operation_by_name("wx") == pg.Operation(0)

    def test_first_name_match_wins(self):
        """Test duplicate names resolve to the first node."""
        gb = GraphBuilder()
        first = gb.add_variable("dup")
        gb.add_variable("dup")
        graph = gb.build_graph()
        assert graph.variable_by_name("dup") == first

    def test_lookup_errors(self):
        """Test misses and foreign nodes raise."""
        graph, _, _ = w_x_plus_b()
        with pytest.raises(GraphError, match="Could not find variable"):
            graph.variable_by_name("nope")
        with pytest.raises(GraphError, match="Could not find operation"):
            graph.operation_by_name("nope")
        with pytest.raises(GraphError):
            graph.variable_name(pg.Variable(10))
        with pytest.raises(GraphError):
            graph.operation_name(pg.Variable(0))
