"""Tests for Cell values, expressions, dependency discovery and immune blocks."""

import pytest

from livecell import (
    INVALID,
    Cell,
    InvalidExpressionError,
    ProtocolViolation,
    derived,
    immune,
)


class TestValue:
    def test_initialized(self):
        c = Cell()
        assert c.value is None

    def test_change(self):
        c = Cell()
        c.value = "test"
        assert c.value == "test"

    def test_replaces_expression(self):
        c = derived(lambda: "test")
        c.value = 7
        assert c.value == 7
        assert c.expression is None

    def test_source_is_prefilter_constant(self):
        c = Cell(3)
        c.add_filter(lambda x: x * 10)
        assert c.value == 30
        assert c.source == 3

    def test_peek_does_not_subscribe(self):
        a = Cell(1)
        b = derived(lambda: a.peek() * 2)
        assert b.value == 2
        a.value = 5
        assert b.value == 2
        assert a not in b.dependencies

    def test_repr(self):
        assert repr(Cell(5)) == "Cell(5, DYNAMIC, constant)"
        assert "derived" in repr(derived(lambda: 1))


class TestExpression:
    def test_initialized(self):
        c = derived(lambda: "test")
        assert c.value == "test"

    def test_update_reevaluates(self):
        counter = [0]
        c = derived(lambda: counter[0])
        assert c.value == 0
        counter[0] += 1
        c.update()
        assert c.value == 1

    def test_replaces_constant(self):
        c = Cell("test")
        c.expression = lambda: 7
        assert c.value == 7
        assert c.expression is not None
        assert c.source is None

    def test_rejects_non_callable(self):
        c = Cell(1)
        with pytest.raises(InvalidExpressionError):
            c.expression = 5
        assert c.value == 1

    def test_invalid_expression_is_a_type_error(self):
        with pytest.raises(TypeError):
            Cell(expression="not callable")

    def test_exception_keeps_previous_value(self, runtime):
        a = Cell(1)
        b = derived(lambda: 10 // a.value)
        assert b.value == 10

        with pytest.raises(ZeroDivisionError):
            a.value = 0
        assert b.value == 10
        assert len(runtime.stack) == 0

        # Still subscribed: reads before the failure were recorded.
        a.value = 2
        assert b.value == 5

    def test_self_read_does_not_subscribe(self):
        c = Cell()
        c.expression = lambda: (c.value or 0) + 1
        assert c.value == 1
        c.update()
        assert c.value == 2
        assert c not in c.dependencies


class TestDecorator:
    def test_derived_factory(self):
        price = Cell(10)
        quantity = Cell(3)

        @derived
        def total():
            return price.value * quantity.value

        assert total.value == 30
        quantity.value = 4
        assert total.value == 40


class TestLinking:
    def test_link_in_expression(self):
        c1 = Cell("test")
        c2 = derived(lambda: c1.value.upper())
        assert c2.value == "TEST"
        c1.value = "another string"
        assert c1.value == "another string"
        assert c2.value == "ANOTHER STRING"

    def test_link_in_filter(self):
        c1 = Cell(str.upper)
        c2 = Cell("Test")
        c2.add_filter(lambda s: c1.value(s))
        assert c2.value == "TEST"
        c1.value = str.lower
        assert c2.value == "test"

    def test_dependencies_reflect_last_pass(self):
        flag = Cell(True)
        a = Cell(1)
        b = Cell(2)
        out = derived(lambda: a.value if flag.value else b.value)
        assert out.dependencies == {flag, a}
        flag.value = False
        assert out.dependencies == {flag, b}

    def test_chained(self):
        o = Cell(3)
        doubled = derived(lambda: o.value * 2)
        quadrupled = derived(lambda: doubled.value * 2)
        assert quadrupled.value == 12
        o.value = 5
        assert quadrupled.value == 20


class TestImmune:
    def test_nested_mutation_subscribes_without_immune(self):
        counter = 0
        inner = None

        def expression():
            nonlocal counter, inner
            counter += 1
            if inner is None:
                inner = Cell(0)
                inner.value += 1

        outer = derived(expression)
        # Reading inner subscribed outer, so setting it re-ran outer at once.
        assert counter == 2
        inner.value += 1
        assert counter == 2
        assert outer.value is None

    def test_immune_blocks_subscription(self):
        counter = 0
        inner = None

        def make():
            nonlocal inner
            inner = Cell(0)
            inner.value += 1

        def expression():
            nonlocal counter
            counter += 1
            if inner is None:
                immune(make)

        derived(expression)
        assert counter == 1
        inner.value += 1
        assert counter == 1

    def test_execute_immune_returns_result(self):
        other = Cell(5)
        holder = Cell()
        holder.expression = lambda: holder.execute_immune(lambda x: other.value + x, 1)
        assert holder.value == 6
        assert other not in holder.dependencies
        other.value = 10
        assert holder.value == 6

    def test_execute_immune_outside_evaluation(self):
        c = Cell(1)
        with pytest.raises(ProtocolViolation):
            c.execute_immune(lambda: None)

    def test_execute_immune_from_another_cells_expression(self):
        bystander = Cell(1)
        with pytest.raises(ProtocolViolation):
            derived(lambda: bystander.execute_immune(lambda: 1))

    def test_immune_restores_stack_on_error(self, runtime):
        def fail():
            raise RuntimeError("oops")

        with pytest.raises(RuntimeError):
            immune(fail)
        assert len(runtime.stack) == 0


class TestInvalidSentinel:
    def test_sentinel_is_falsy(self):
        assert not INVALID
        assert repr(INVALID) == "INVALID"

    def test_holding_sentinel_is_invalid(self):
        c = Cell(INVALID)
        assert c.is_invalid
        c.value = 1
        assert not c.is_invalid
