"""Expression evaluation engine for workflow definitions.

Values that start with ``@`` are expressions of the form
``@function(arg, ...)`` optionally followed by ``.property`` and ``[index]``
accessors. Arguments are literals (strings, numbers, booleans, null) or
nested calls, with or without their own leading ``@``. Anything else is a
literal and is returned unchanged.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from ..errors.models import CollaboratorUnavailableError, ExpressionEvaluationError
from .context import ExecutionContext

logger = logging.getLogger(__name__)


class TokenType(Enum):
    """Token types for expression parsing."""

    NUMBER = "NUMBER"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    NULL = "NULL"
    IDENTIFIER = "IDENTIFIER"
    AT = "AT"
    DOT = "DOT"
    LBRACKET = "LBRACKET"
    RBRACKET = "RBRACKET"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    EOF = "EOF"


class Token:
    """A token in an expression."""

    def __init__(self, type_: TokenType, value: str, position: int = 0):
        self.type = type_
        self.value = value
        self.position = position

    def __repr__(self):
        return f"Token({self.type}, {self.value!r})"


_SINGLE_CHAR_TOKENS = {
    "@": TokenType.AT,
    ".": TokenType.DOT,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
}


class ExpressionLexer:
    """Tokenizes ``@function(...)`` expressions."""

    def __init__(self, text: str):
        self.text = text
        self.position = 0
        self.current_char = self.text[0] if text else None

    def advance(self):
        """Move to next character."""
        self.position += 1
        if self.position >= len(self.text):
            self.current_char = None
        else:
            self.current_char = self.text[self.position]

    def peek_next(self) -> str | None:
        peek_pos = self.position + 1
        if peek_pos < len(self.text):
            return self.text[peek_pos]
        return None

    def skip_whitespace(self):
        while self.current_char is not None and self.current_char.isspace():
            self.advance()

    def read_number(self) -> str:
        result = ""
        if self.current_char == "-":
            result += "-"
            self.advance()
        while self.current_char is not None and (self.current_char.isdigit() or self.current_char == "."):
            result += self.current_char
            self.advance()
        return result

    def read_string(self, quote_char: str) -> str:
        """Read a quoted string; a doubled quote is an escaped quote."""
        result = ""
        start = self.position
        self.advance()  # Skip opening quote

        while True:
            if self.current_char is None:
                raise ExpressionEvaluationError(f"Unterminated string starting at position {start}")
            if self.current_char == quote_char:
                if self.peek_next() == quote_char:
                    result += quote_char
                    self.advance()
                    self.advance()
                    continue
                self.advance()  # Skip closing quote
                return result
            if self.current_char == "\\" and self.peek_next() is not None:
                self.advance()
                result += {"n": "\n", "t": "\t", "r": "\r"}.get(self.current_char, self.current_char)
                self.advance()
                continue
            result += self.current_char
            self.advance()

    def read_identifier(self) -> str:
        result = ""
        while self.current_char is not None and (self.current_char.isalnum() or self.current_char in "_$"):
            result += self.current_char
            self.advance()
        return result

    def tokenize(self) -> list[Token]:
        """Tokenize the entire expression."""
        tokens = []

        while self.current_char is not None:
            self.skip_whitespace()

            if self.current_char is None:
                break

            start_pos = self.position

            if self.current_char.isdigit() or (self.current_char == "-" and (self.peek_next() or "").isdigit()):
                tokens.append(Token(TokenType.NUMBER, self.read_number(), start_pos))

            elif self.current_char in "\"'":
                tokens.append(Token(TokenType.STRING, self.read_string(self.current_char), start_pos))

            elif self.current_char.isalpha() or self.current_char in "_$":
                value = self.read_identifier()
                if value in ("true", "false"):
                    tokens.append(Token(TokenType.BOOLEAN, value, start_pos))
                elif value == "null":
                    tokens.append(Token(TokenType.NULL, value, start_pos))
                else:
                    tokens.append(Token(TokenType.IDENTIFIER, value, start_pos))

            elif self.current_char in _SINGLE_CHAR_TOKENS:
                tokens.append(Token(_SINGLE_CHAR_TOKENS[self.current_char], self.current_char, start_pos))
                self.advance()

            else:
                raise ExpressionEvaluationError(
                    f"Unexpected character '{self.current_char}' at position {self.position}"
                )

        tokens.append(Token(TokenType.EOF, "", len(self.text)))
        return tokens


class ExpressionParser:
    """Parses tokenized expressions into a dict-based AST."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.position = 0
        self.current_token = tokens[0] if tokens else Token(TokenType.EOF, "")

    def advance(self):
        self.position += 1
        if self.position < len(self.tokens):
            self.current_token = self.tokens[self.position]
        else:
            self.current_token = Token(TokenType.EOF, "")

    def expect(self, token_type: TokenType, description: str):
        if self.current_token.type != token_type:
            raise ExpressionEvaluationError(
                f"Expected {description} at position {self.current_token.position}, "
                f"got {self.current_token.value or 'end of expression'!r}"
            )
        self.advance()

    def parse(self) -> dict[str, Any]:
        """Parse the whole token stream into a single expression node."""
        node = self.expression()
        if self.current_token.type != TokenType.EOF:
            raise ExpressionEvaluationError(
                f"Unexpected token {self.current_token.value!r} at position {self.current_token.position}"
            )
        return node

    def expression(self) -> dict[str, Any]:
        # A leading '@' is allowed on the top level and on every argument
        if self.current_token.type == TokenType.AT:
            self.advance()
        return self.postfix()

    def postfix(self) -> dict[str, Any]:
        """Parse property (``.name``) and index (``[expr]``) accessors."""
        node = self.primary()

        while True:
            if self.current_token.type == TokenType.DOT:
                self.advance()
                if self.current_token.type != TokenType.IDENTIFIER:
                    raise ExpressionEvaluationError("Expected property name after '.'")
                node = {"type": "member", "object": node, "property": self.current_token.value}
                self.advance()
            elif self.current_token.type == TokenType.LBRACKET:
                self.advance()
                index = self.expression()
                self.expect(TokenType.RBRACKET, "']'")
                node = {"type": "index", "object": node, "index": index}
            else:
                return node

    def primary(self) -> dict[str, Any]:
        token = self.current_token

        if token.type == TokenType.NUMBER:
            self.advance()
            try:
                value: Any = float(token.value) if "." in token.value else int(token.value)
            except ValueError as e:
                raise ExpressionEvaluationError(f"Invalid number literal {token.value!r}") from e
            return {"type": "literal", "value": value}

        if token.type == TokenType.STRING:
            self.advance()
            return {"type": "literal", "value": token.value}

        if token.type == TokenType.BOOLEAN:
            self.advance()
            return {"type": "literal", "value": token.value == "true"}

        if token.type == TokenType.NULL:
            self.advance()
            return {"type": "literal", "value": None}

        if token.type == TokenType.IDENTIFIER:
            self.advance()
            if self.current_token.type != TokenType.LPAREN:
                raise ExpressionEvaluationError(f"Expected '(' after function name '{token.value}'")
            self.advance()
            args = []
            if self.current_token.type != TokenType.RPAREN:
                args.append(self.expression())
                while self.current_token.type == TokenType.COMMA:
                    self.advance()
                    args.append(self.expression())
            self.expect(TokenType.RPAREN, "')'")
            return {"type": "call", "name": token.value, "args": args}

        raise ExpressionEvaluationError(
            f"Unexpected token {token.value or 'end of expression'!r} at position {token.position}"
        )


FunctionImpl = Callable[[list[Any], ExecutionContext], Awaitable[Any]]


class ExpressionEvaluator:
    """Evaluates workflow expressions against an execution context."""

    # name -> (min args, max args or None for variadic)
    ARITY: dict[str, tuple[int, int | None]] = {
        "parameters": (1, 1),
        "actions": (1, 1),
        "body": (1, 1),
        "variables": (1, 1),
        "item": (0, 0),
        "secret": (1, 1),
        "trigger": (0, 1),
        "not": (1, 1),
        "equals": (2, 2),
        "greater": (2, 2),
        "greaterOrEquals": (2, 2),
        "less": (2, 2),
        "lessOrEquals": (2, 2),
        "and": (1, None),
        "or": (1, None),
        "empty": (1, 1),
        "length": (1, 1),
        "concat": (1, None),
        "string": (1, 1),
        "int": (1, 1),
    }

    def __init__(self, secret_store: Any = None):
        self.secret_store = secret_store
        self._cache: dict[str, dict[str, Any]] = {}
        self._functions: dict[str, FunctionImpl] = {
            "parameters": self._fn_parameters,
            "actions": self._fn_actions,
            "body": self._fn_body,
            "variables": self._fn_variables,
            "item": self._fn_item,
            "secret": self._fn_secret,
            "trigger": self._fn_trigger,
            "not": self._fn_not,
            "equals": self._fn_equals,
            "greater": self._comparison(lambda a, b: a > b),
            "greaterOrEquals": self._comparison(lambda a, b: a >= b),
            "less": self._comparison(lambda a, b: a < b),
            "lessOrEquals": self._comparison(lambda a, b: a <= b),
            "empty": self._fn_empty,
            "length": self._fn_length,
            "concat": self._fn_concat,
            "string": self._fn_string,
            "int": self._fn_int,
        }

    @staticmethod
    def is_expression(value: Any) -> bool:
        return isinstance(value, str) and value.startswith("@")

    def parse(self, expression: str) -> dict[str, Any]:
        """Parse (and cache) an expression string.

        Raises:
            ExpressionEvaluationError: If the expression is malformed
        """
        if expression not in self._cache:
            try:
                tokens = ExpressionLexer(expression).tokenize()
                self._cache[expression] = ExpressionParser(tokens).parse()
            except ExpressionEvaluationError as e:
                raise ExpressionEvaluationError(f"Invalid expression '{expression}': {e}") from e
        return self._cache[expression]

    async def evaluate(self, value: Any, context: ExecutionContext) -> Any:
        """Evaluate ``value`` if it is an expression, otherwise return it unchanged.

        Args:
            value: Literal value or ``@``-prefixed expression string
            context: Execution context supplying parameters, results and variables

        Returns:
            The evaluated value

        Raises:
            ExpressionEvaluationError: Unknown function, bad syntax or wrong arity
            CollaboratorUnavailableError: ``secret()`` without a usable secret store
        """
        if not self.is_expression(value):
            return value

        ast = self.parse(value)
        try:
            return await self._evaluate_node(ast, context)
        except ExpressionEvaluationError as e:
            raise ExpressionEvaluationError(f"Failed to evaluate expression '{value}': {e}") from e

    async def evaluate_inputs(self, value: Any, context: ExecutionContext) -> Any:
        """Evaluate every expression found in a nested inputs structure."""
        if isinstance(value, Mapping):
            return {key: await self.evaluate_inputs(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [await self.evaluate_inputs(item, context) for item in value]
        return await self.evaluate(value, context)

    async def evaluate_condition(self, value: Any, context: ExecutionContext) -> bool:
        """Evaluate an expression and coerce the result to a boolean."""
        return self._to_boolean(await self.evaluate(value, context))

    async def _evaluate_node(self, node: dict[str, Any], context: ExecutionContext) -> Any:
        node_type = node["type"]

        if node_type == "literal":
            return node["value"]

        if node_type == "member":
            target = await self._evaluate_node(node["object"], context)
            return self._navigate(target, node["property"])

        if node_type == "index":
            target = await self._evaluate_node(node["object"], context)
            index = await self._evaluate_node(node["index"], context)
            return self._navigate(target, index)

        if node_type == "call":
            return await self._call(node["name"], node["args"], context)

        raise ExpressionEvaluationError(f"Unknown node type: {node_type}")

    async def _call(self, name: str, arg_nodes: list[dict[str, Any]], context: ExecutionContext) -> Any:
        if name not in self.ARITY:
            raise ExpressionEvaluationError(f"Unknown function '{name}'")

        min_args, max_args = self.ARITY[name]
        if len(arg_nodes) < min_args or (max_args is not None and len(arg_nodes) > max_args):
            expected = str(min_args) if min_args == max_args else f"at least {min_args}"
            raise ExpressionEvaluationError(f"Function '{name}' expects {expected} argument(s), got {len(arg_nodes)}")

        # and/or short-circuit, so their operands are evaluated lazily
        if name == "and":
            for arg in arg_nodes:
                if not self._to_boolean(await self._evaluate_node(arg, context)):
                    return False
            return True
        if name == "or":
            for arg in arg_nodes:
                if self._to_boolean(await self._evaluate_node(arg, context)):
                    return True
            return False

        args = [await self._evaluate_node(arg, context) for arg in arg_nodes]
        return await self._functions[name](args, context)

    # Data access functions

    async def _fn_parameters(self, args: list[Any], context: ExecutionContext) -> Any:
        return context.parameters.get(args[0])

    async def _fn_actions(self, args: list[Any], context: ExecutionContext) -> Any:
        result = context.get_result(args[0])
        return result.to_dict() if result is not None else None

    async def _fn_body(self, args: list[Any], context: ExecutionContext) -> Any:
        result = context.get_result(args[0])
        return result.output if result is not None else None

    async def _fn_variables(self, args: list[Any], context: ExecutionContext) -> Any:
        return context.variables.get(args[0])

    async def _fn_item(self, args: list[Any], context: ExecutionContext) -> Any:
        return context.variables.get("item")

    async def _fn_trigger(self, args: list[Any], context: ExecutionContext) -> Any:
        if not args:
            return context.trigger
        value: Any = context.trigger
        for segment in str(args[0]).split("."):
            value = self._navigate(value, segment)
        return value

    async def _fn_secret(self, args: list[Any], context: ExecutionContext) -> Any:
        name = args[0]
        if self.secret_store is None:
            raise CollaboratorUnavailableError(f"Secret store not configured; cannot resolve secret '{name}'")
        if not self.secret_store.is_available():
            raise CollaboratorUnavailableError(f"Secret store is not available; cannot resolve secret '{name}'")
        secret = await self.secret_store.get_secret(name)
        if secret is None:
            raise CollaboratorUnavailableError(f"Secret '{name}' not found")
        return secret.value

    # Logic and comparison functions

    async def _fn_not(self, args: list[Any], context: ExecutionContext) -> bool:
        return not self._to_boolean(args[0])

    async def _fn_equals(self, args: list[Any], context: ExecutionContext) -> bool:
        return self._strict_equals(args[0], args[1])

    def _comparison(self, compare: Callable[[Any, Any], bool]) -> FunctionImpl:
        async def apply(args: list[Any], context: ExecutionContext) -> bool:
            left, right = args
            if self._is_number(left) and self._is_number(right):
                return compare(left, right)
            if isinstance(left, str) and isinstance(right, str):
                return compare(left, right)
            raise ExpressionEvaluationError(
                f"Cannot compare {type(left).__name__} with {type(right).__name__}"
            )

        return apply

    # Collection and conversion functions

    async def _fn_empty(self, args: list[Any], context: ExecutionContext) -> bool:
        value = args[0]
        if value is None:
            return True
        if isinstance(value, str | list | dict | tuple):
            return len(value) == 0
        return False

    async def _fn_length(self, args: list[Any], context: ExecutionContext) -> int:
        value = args[0]
        if value is None:
            return 0
        if isinstance(value, str | list | dict | tuple):
            return len(value)
        raise ExpressionEvaluationError(f"length() expects a string, array or object, got {type(value).__name__}")

    async def _fn_concat(self, args: list[Any], context: ExecutionContext) -> Any:
        if all(isinstance(arg, list) for arg in args):
            combined: list[Any] = []
            for arg in args:
                combined.extend(arg)
            return combined
        return "".join(self._stringify(arg) for arg in args)

    async def _fn_string(self, args: list[Any], context: ExecutionContext) -> str:
        return self._stringify(args[0])

    async def _fn_int(self, args: list[Any], context: ExecutionContext) -> int:
        value = args[0]
        if isinstance(value, bool) or value is None:
            raise ExpressionEvaluationError(f"int() cannot convert {value!r}")
        try:
            if isinstance(value, str):
                return int(float(value.strip()))
            return int(value)
        except (TypeError, ValueError) as e:
            raise ExpressionEvaluationError(f"int() cannot convert {value!r}") from e

    # Helpers

    @staticmethod
    def _is_number(value: Any) -> bool:
        return isinstance(value, int | float) and not isinstance(value, bool)

    def _strict_equals(self, left: Any, right: Any) -> bool:
        """Equality without type coercion; int and float compare by value."""
        if self._is_number(left) and self._is_number(right):
            return left == right
        if type(left) is not type(right):
            return False
        return left == right

    @staticmethod
    def _stringify(value: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, dict | list):
            return json.dumps(value, default=str)
        return str(value)

    @staticmethod
    def _navigate(target: Any, key: Any) -> Any:
        """Property or index access; missing segments yield None."""
        if target is None:
            return None
        if isinstance(target, Mapping):
            return target.get(key)
        if isinstance(target, list | tuple):
            if isinstance(key, str) and key.lstrip("-").isdigit():
                key = int(key)
            if isinstance(key, int) and not isinstance(key, bool) and -len(target) <= key < len(target):
                return target[key]
            return None
        return None

    @staticmethod
    def _to_boolean(value: Any) -> bool:
        """Truthiness used by conditions."""
        if isinstance(value, str):
            return value not in ("", "false")
        return bool(value)
