"""Tests for the workflow expression evaluator."""

from datetime import datetime, timezone

import pytest

from loomflow.errors import CollaboratorUnavailableError, ExpressionEvaluationError
from loomflow.workflow.context import ExecutionContext
from loomflow.workflow.expressions import ExpressionEvaluator, ExpressionLexer, TokenType
from loomflow.workflow.models import ActionResult, ActionStatus


def succeeded(output):
    now = datetime.now(timezone.utc)
    return ActionResult(status=ActionStatus.SUCCEEDED, start_time=now, end_time=now, output=output)


@pytest.fixture
def context():
    ctx = ExecutionContext(
        instance_id="inst-1",
        parameters={"name": "Ada", "limit": 3, "tags": ["x", "y"]},
        trigger={"body": {"order": {"id": 42}}},
        variables={"item": {"sku": "A1"}, "loopIndex": 2},
    )
    ctx.record("a", succeeded({"v": 5, "items": [10, 20, 30]}))
    return ctx


@pytest.fixture
def evaluator(secret_store):
    return ExpressionEvaluator(secret_store=secret_store)


class TestLexer:
    """Tokenization of expression text."""

    def test_tokens_for_call_with_path(self):
        tokens = ExpressionLexer("@actions('a').outputs[0]").tokenize()

        types = [token.type for token in tokens]
        assert types == [
            TokenType.AT,
            TokenType.IDENTIFIER,
            TokenType.LPAREN,
            TokenType.STRING,
            TokenType.RPAREN,
            TokenType.DOT,
            TokenType.IDENTIFIER,
            TokenType.LBRACKET,
            TokenType.NUMBER,
            TokenType.RBRACKET,
            TokenType.EOF,
        ]

    def test_negative_number_literal(self):
        tokens = ExpressionLexer("less(-1.5, 2)").tokenize()

        assert tokens[2].type == TokenType.NUMBER
        assert tokens[2].value == "-1.5"

    def test_unexpected_character(self):
        with pytest.raises(ExpressionEvaluationError, match="Unexpected character"):
            ExpressionLexer("equals(1 + 2)").tokenize()


class TestLiteralPassthrough:
    """Non-expression values are returned unchanged."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["plain text", "", 12, 3.5, True, None, ["@not(true)"], {"k": "v"}])
    async def test_literals_unchanged(self, evaluator, context, value):
        assert await evaluator.evaluate(value, context) == value

    @pytest.mark.asyncio
    async def test_string_with_inner_at_is_literal(self, evaluator, context):
        assert await evaluator.evaluate("mail me @ home", context) == "mail me @ home"


class TestDataAccess:
    """parameters(), actions(), body(), variables(), trigger() and secret()."""

    @pytest.mark.asyncio
    async def test_parameters(self, evaluator, context):
        assert await evaluator.evaluate("@parameters('name')", context) == "Ada"

    @pytest.mark.asyncio
    async def test_missing_parameter_is_none(self, evaluator, context):
        assert await evaluator.evaluate("@parameters('missing')", context) is None

    @pytest.mark.asyncio
    async def test_action_output_path(self, evaluator, context):
        assert await evaluator.evaluate("@actions('a').outputs.v", context) == 5

    @pytest.mark.asyncio
    async def test_action_status(self, evaluator, context):
        assert await evaluator.evaluate("@actions('a').status", context) == "Succeeded"

    @pytest.mark.asyncio
    async def test_index_access(self, evaluator, context):
        assert await evaluator.evaluate("@actions('a').outputs.items[1]", context) == 20

    @pytest.mark.asyncio
    async def test_missing_segment_is_none(self, evaluator, context):
        assert await evaluator.evaluate("@actions('a').outputs.nope.deeper", context) is None
        assert await evaluator.evaluate("@actions('unknown').outputs", context) is None
        assert await evaluator.evaluate("@actions('a').outputs.items[9]", context) is None

    @pytest.mark.asyncio
    async def test_body_shortcut(self, evaluator, context):
        assert await evaluator.evaluate("@body('a').v", context) == 5

    @pytest.mark.asyncio
    async def test_variables_and_item(self, evaluator, context):
        assert await evaluator.evaluate("@variables('loopIndex')", context) == 2
        assert await evaluator.evaluate("@item().sku", context) == "A1"

    @pytest.mark.asyncio
    async def test_trigger_with_and_without_path(self, evaluator, context):
        assert await evaluator.evaluate("@trigger('body.order.id')", context) == 42
        assert await evaluator.evaluate("@trigger().body.order.id", context) == 42

    @pytest.mark.asyncio
    async def test_secret(self, evaluator, context):
        assert await evaluator.evaluate("@secret('api-key')", context) == "s3cr3t"

    @pytest.mark.asyncio
    async def test_secret_missing(self, evaluator, context):
        with pytest.raises(CollaboratorUnavailableError, match="not found"):
            await evaluator.evaluate("@secret('other')", context)

    @pytest.mark.asyncio
    async def test_secret_store_unavailable(self, secret_store, context):
        secret_store.available = False
        evaluator = ExpressionEvaluator(secret_store=secret_store)

        with pytest.raises(CollaboratorUnavailableError, match="not available"):
            await evaluator.evaluate("@secret('api-key')", context)

    @pytest.mark.asyncio
    async def test_secret_without_store(self, context):
        with pytest.raises(CollaboratorUnavailableError):
            await ExpressionEvaluator().evaluate("@secret('api-key')", context)


class TestFunctions:
    """Logic, comparison, collection and conversion helpers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("@equals(1, 1.0)", True),
            ("@equals('1', 1)", False),
            ("@equals(true, 1)", False),
            ("@equals(null, null)", True),
            ("@not(equals(parameters('limit'), 3))", False),
            ("@greater(parameters('limit'), 2)", True),
            ("@greaterOrEquals(3, 3)", True),
            ("@less(-1, 0)", True),
            ("@lessOrEquals('a', 'b')", True),
            ("@and(true, equals(1, 1))", True),
            ("@or(false, empty(''))", True),
            ("@empty(parameters('tags'))", False),
            ("@empty(null)", True),
            ("@length(parameters('tags'))", 2),
            ("@concat('Hello, ', parameters('name'), '!')", "Hello, Ada!"),
            ("@concat(parameters('tags'), parameters('tags'))", ["x", "y", "x", "y"]),
            ("@string(true)", "true"),
            ("@string(42)", "42"),
            ("@int('17')", 17),
            ("@int(4.9)", 4),
        ],
    )
    async def test_function_results(self, evaluator, context, expression, expected):
        assert await evaluator.evaluate(expression, context) == expected

    @pytest.mark.asyncio
    async def test_nested_arguments_with_commas(self, evaluator, context):
        """Commas inside nested calls and strings do not split the outer argument list."""
        result = await evaluator.evaluate("@concat(string(equals('a,b', 'a,b')), ',', 'x')", context)

        assert result == "true,x"

    @pytest.mark.asyncio
    async def test_arguments_may_carry_their_own_at(self, evaluator, context):
        assert await evaluator.evaluate("@equals(@parameters('limit'), 3)", context) is True

    @pytest.mark.asyncio
    async def test_and_short_circuits(self, evaluator, context):
        """The secret lookup in the second operand is never evaluated."""
        assert await evaluator.evaluate("@and(false, secret('never'))", context) is False

    @pytest.mark.asyncio
    async def test_evaluate_inputs_recurses(self, evaluator, context):
        inputs = {"greeting": "@concat('hi ', parameters('name'))", "list": ["@actions('a').outputs.v", 1]}

        assert await evaluator.evaluate_inputs(inputs, context) == {"greeting": "hi Ada", "list": [5, 1]}

    @pytest.mark.asyncio
    async def test_evaluate_condition_coerces(self, evaluator, context):
        assert await evaluator.evaluate_condition("@parameters('name')", context) is True
        assert await evaluator.evaluate_condition("@parameters('missing')", context) is False


class TestErrors:
    """Malformed or unsupported expressions."""

    @pytest.mark.asyncio
    async def test_unknown_function_names_expression(self, evaluator, context):
        with pytest.raises(ExpressionEvaluationError, match=r"@explode\('x'\)"):
            await evaluator.evaluate("@explode('x')", context)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expression", ["@equals(1", "@parameters('x'", "@", "@'unterminated", "@name"])
    async def test_malformed_expressions(self, evaluator, context, expression):
        with pytest.raises(ExpressionEvaluationError):
            await evaluator.evaluate(expression, context)

    @pytest.mark.asyncio
    async def test_wrong_arity(self, evaluator, context):
        with pytest.raises(ExpressionEvaluationError, match="expects 2"):
            await evaluator.evaluate("@equals(1)", context)

    @pytest.mark.asyncio
    async def test_comparison_type_mismatch(self, evaluator, context):
        with pytest.raises(ExpressionEvaluationError, match="Cannot compare"):
            await evaluator.evaluate("@greater('a', 1)", context)

    @pytest.mark.asyncio
    async def test_int_of_garbage(self, evaluator, context):
        with pytest.raises(ExpressionEvaluationError, match="int"):
            await evaluator.evaluate("@int('abc')", context)
