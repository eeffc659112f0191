"""
FalconCore Parser
Recursive descent parser with one token of lookahead that builds an AST
"""

from typing import Callable, Dict, Iterable, List, Optional

from .ast_nodes import *
from .errors import ParseError
from .lexer import BUILTIN_TOKENS, Lexer, Token, TokenType

DECLARATIONS = {
    TokenType.LET: (False, False),
    TokenType.CONST: (False, True),
    TokenType.SECURE_LET: (True, False),
    TokenType.SECURE_CONST: (True, True),
}

# tokens after `return` that mean "no value follows"
RETURN_TERMINATORS = {
    TokenType.RIGHT_BRACE, TokenType.SEMICOLON, TokenType.EOF,
    TokenType.LET, TokenType.CONST, TokenType.SECURE_LET, TokenType.SECURE_CONST,
    TokenType.PRINT, TokenType.IF, TokenType.ELSEIF, TokenType.ELSE, TokenType.ENDIF,
    TokenType.REPEAT, TokenType.ENDREPEAT, TokenType.FN, TokenType.RETURN,
    TokenType.BREAK, TokenType.CONTINUE,
}

BINARY_OPERATORS = {
    TokenType.OR: ('or', 1),
    TokenType.AND: ('and', 2),
    TokenType.EQUAL: ('==', 3),
    TokenType.NOT_EQUAL: ('!=', 3),
    TokenType.LESS: ('<', 4),
    TokenType.LESS_EQUAL: ('<=', 4),
    TokenType.GREATER: ('>', 4),
    TokenType.GREATER_EQUAL: ('>=', 4),
    TokenType.PLUS: ('+', 5),
    TokenType.MINUS: ('-', 5),
    TokenType.MULTIPLY: ('*', 6),
    TokenType.DIVIDE: ('/', 6),
}
UNARY_OPERATORS = {TokenType.MINUS: '-', TokenType.NOT: 'not'}

# parentheses, call arguments and blocks each add one level
MAX_NESTING_DEPTH = 100


def describe(token_type: TokenType) -> str:
    return token_type.name


class Parser:
    def __init__(self, tokens: Iterable[Token]):
        self.tokens = iter(tokens)
        self.current_token: Token = Token(TokenType.EOF, '', 1, 1)
        self.exhausted = False
        self.depth = 0
        self.advance()

        self.statement_table: Dict[TokenType, Callable[[], Statement]] = {
            TokenType.LET: self.variable_declaration,
            TokenType.CONST: self.variable_declaration,
            TokenType.SECURE_LET: self.variable_declaration,
            TokenType.SECURE_CONST: self.variable_declaration,
            TokenType.PRINT: self.print_statement,
            TokenType.IF: self.if_statement,
            TokenType.REPEAT: self.repeat_statement,
            TokenType.FN: self.function_definition,
            TokenType.RETURN: self.return_statement,
            TokenType.BREAK: self.break_statement,
            TokenType.CONTINUE: self.continue_statement,
            TokenType.NETWORK_SCAN: self.expression_statement,
            TokenType.CRYPTO_RANDOM: self.expression_statement,
            TokenType.TIME_NOW: self.expression_statement,
            TokenType.WAIT: self.expression_statement,
        }

    def advance(self) -> Token:
        previous = self.current_token
        if not self.exhausted:
            next_token = next(self.tokens, None)
            if next_token is None:
                next_token = Token(TokenType.EOF, '', previous.line, previous.column)
            self.current_token = next_token
            self.exhausted = next_token.type == TokenType.EOF
        return previous

    def check(self, token_type: TokenType) -> bool:
        return self.current_token.type == token_type

    def match(self, *types: TokenType) -> bool:
        if self.current_token.type in types:
            self.advance()
            return True
        return False

    def error(self, message: str, expected=None) -> ParseError:
        token = self.current_token
        return ParseError(message, token.line, token.column, expected=expected, found=token.type)

    def eat(self, expected: TokenType, message: Optional[str] = None) -> Token:
        if self.current_token.type == expected:
            return self.advance()
        found = self.current_token
        found_text = "end of input" if found.type == TokenType.EOF else f"{describe(found.type)} {found.value!r}"
        raise self.error(message or f"Expected {describe(expected)}, found {found_text}", expected=expected)

    def enter(self, token: Token, what: str):
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ParseError(f"{what} nested too deeply", token.line, token.column, found=token.type)

    def leave(self):
        self.depth -= 1

    def skip_separators(self):
        while self.match(TokenType.SEMICOLON):
            pass

    def parse(self) -> Program:
        statements = []

        self.skip_separators()
        while not self.check(TokenType.EOF):
            statements.append(self.statement())
            self.skip_separators()

        return Program(statements)

    def statement(self) -> Statement:
        handler = self.statement_table.get(self.current_token.type, self.expression_statement)
        return handler()

    def variable_declaration(self) -> VariableDecl:
        token = self.advance()
        secure, constant = DECLARATIONS[token.type]
        name = self.eat(TokenType.IDENTIFIER, "Expected variable name after declaration keyword").value
        self.eat(TokenType.ASSIGN, f"Expected '=' after variable name '{name}'")
        initializer = self.expression()
        return VariableDecl(name, initializer, secure, constant, token.line, token.column)

    def print_statement(self) -> Print:
        token = self.eat(TokenType.PRINT)
        return Print(self.expression(), token.line, token.column)

    def if_statement(self) -> If:
        token = self.eat(TokenType.IF)
        branches = [(token, self.expression(), self.block("if condition"))]
        while self.check(TokenType.ELSEIF):
            branch = self.advance()
            branches.append((branch, self.expression(), self.block("elseif condition")))

        else_block = None
        if self.match(TokenType.ELSE):
            else_block = self.block("else")
        self.match(TokenType.ENDIF)

        # elseif chains become nested Ifs in the else-block
        for branch, condition, then_block in reversed(branches):
            node = If(condition, then_block, else_block, branch.line, branch.column)
            else_block = [node]
        return node

    def repeat_statement(self) -> Repeat:
        token = self.eat(TokenType.REPEAT)
        count = self.expression()
        body = self.block("repeat count")
        self.match(TokenType.ENDREPEAT)
        return Repeat(count, body, token.line, token.column)

    def function_definition(self) -> FunctionDef:
        token = self.eat(TokenType.FN)
        name = self.eat(TokenType.IDENTIFIER, "Expected function name after 'fn'").value

        self.eat(TokenType.LEFT_PAREN, f"Expected '(' after function name '{name}'")
        parameters = []
        if not self.check(TokenType.RIGHT_PAREN):
            parameters.append(self.eat(TokenType.IDENTIFIER, "Expected parameter name").value)
            while self.match(TokenType.COMMA):
                parameters.append(self.eat(TokenType.IDENTIFIER, "Expected parameter name").value)
        self.eat(TokenType.RIGHT_PAREN, "Expected ')' after parameters")

        body = self.block(f"function '{name}' signature")
        return FunctionDef(name, parameters, body, token.line, token.column)

    def return_statement(self) -> Return:
        token = self.eat(TokenType.RETURN)
        value = None
        # the value must start on the same line as `return`
        following = self.current_token
        if following.type not in RETURN_TERMINATORS and following.line == token.line:
            value = self.expression()
        return Return(value, token.line, token.column)

    def break_statement(self) -> Break:
        token = self.eat(TokenType.BREAK)
        return Break(token.line, token.column)

    def continue_statement(self) -> Continue:
        token = self.eat(TokenType.CONTINUE)
        return Continue(token.line, token.column)

    def expression_statement(self) -> ExpressionStatement:
        token = self.current_token
        return ExpressionStatement(self.expression(), token.line, token.column)

    def block(self, after: str) -> List[Statement]:
        self.enter(self.eat(TokenType.LEFT_BRACE, f"Expected '{{' after {after}"), "Block")
        statements = []

        self.skip_separators()
        while not self.check(TokenType.RIGHT_BRACE):
            if self.check(TokenType.EOF):
                raise self.error("Expected '}' to close block, found end of input",
                                 expected=TokenType.RIGHT_BRACE)
            statements.append(self.statement())
            self.skip_separators()

        self.eat(TokenType.RIGHT_BRACE)
        self.leave()
        return statements

    # Expressions: precedence climbing over BINARY_OPERATORS
    def expression(self, min_precedence: int = 1) -> Expression:
        expr = self.unary()
        while self.current_token.type in BINARY_OPERATORS:
            symbol, precedence = BINARY_OPERATORS[self.current_token.type]
            if precedence < min_precedence:
                break
            token = self.advance()
            right = self.expression(precedence + 1)
            expr = BinaryOp(expr, symbol, right, token.line, token.column)
        return expr

    def unary(self) -> Expression:
        prefixes = []
        while self.current_token.type in UNARY_OPERATORS:
            prefixes.append(self.advance())
        expr = self.primary()
        for token in reversed(prefixes):
            expr = UnaryOp(UNARY_OPERATORS[token.type], expr, token.line, token.column)
        return expr

    def primary(self) -> Expression:
        token = self.current_token

        if self.match(TokenType.NUMBER, TokenType.FLOAT):
            return NumberLiteral(token.value, token.line, token.column)

        if self.match(TokenType.STRING):
            return StringLiteral(token.value, token.line, token.column)

        if self.match(TokenType.IDENTIFIER):
            if self.check(TokenType.LEFT_PAREN):
                return FunctionCall(token.value, self.arguments(), token.line, token.column)
            return Identifier(token.value, token.line, token.column)

        if self.match(TokenType.NETWORK_SCAN):
            self.enter(self.eat(TokenType.LEFT_PAREN, "Expected '(' after network.scan"), "Expression")
            subnet = self.expression()
            self.eat(TokenType.RIGHT_PAREN, "Expected ')' after network.scan subnet")
            self.leave()
            return NetworkScanCall(subnet, token.line, token.column)

        if token.type in BUILTIN_TOKENS:
            self.advance()
            return BuiltinCall(BUILTIN_TOKENS[token.type], self.arguments(), token.line, token.column)

        if self.match(TokenType.LEFT_PAREN):
            self.enter(token, "Expression")
            expr = self.expression()
            self.eat(TokenType.RIGHT_PAREN, "Expected ')' after expression")
            self.leave()
            return expr

        if token.type == TokenType.EOF:
            raise self.error("Expected expression, found end of input")
        raise self.error(f"Unexpected token {describe(token.type)} {token.value!r} in expression")

    def arguments(self) -> List[Expression]:
        self.enter(self.eat(TokenType.LEFT_PAREN), "Expression")
        arguments = []
        if not self.check(TokenType.RIGHT_PAREN):
            arguments.append(self.expression())
            while self.match(TokenType.COMMA):
                arguments.append(self.expression())
        self.eat(TokenType.RIGHT_PAREN, "Expected ')' after arguments")
        self.leave()
        return arguments


def parse_source(source: str) -> Program:
    """Lex and parse `source` into a `Program`."""
    return Parser(Lexer(source)).parse()
