"""
FalconCore AST Nodes
Abstract Syntax Tree node definitions
"""

from dataclasses import dataclass, field, fields
from typing import Any, List, Optional, Union


class ASTNode:
    """Base class for all AST nodes"""
    pass


class Expression(ASTNode):
    """Base class for expressions"""
    pass


class Statement(ASTNode):
    """Base class for statements"""
    pass


def position():
    return field(default=0, compare=False, repr=False)


# Literal Expressions
@dataclass
class NumberLiteral(Expression):
    value: Union[int, float]
    line: int = position()
    column: int = position()


@dataclass
class StringLiteral(Expression):
    value: str
    line: int = position()
    column: int = position()


@dataclass
class Identifier(Expression):
    name: str
    line: int = position()
    column: int = position()


# Operations
@dataclass
class BinaryOp(Expression):
    left: Expression
    operator: str
    right: Expression
    line: int = position()
    column: int = position()


@dataclass
class UnaryOp(Expression):
    operator: str
    operand: Expression
    line: int = position()
    column: int = position()


# Calls
@dataclass
class FunctionCall(Expression):
    name: str
    arguments: List[Expression]
    line: int = position()
    column: int = position()


@dataclass
class BuiltinCall(Expression):
    name: str
    arguments: List[Expression]
    line: int = position()
    column: int = position()


@dataclass
class NetworkScanCall(Expression):
    subnet: Expression
    line: int = position()
    column: int = position()


# Statements
@dataclass
class VariableDecl(Statement):
    name: str
    initializer: Expression
    secure: bool = False
    constant: bool = False
    line: int = position()
    column: int = position()


@dataclass
class Print(Statement):
    expr: Expression
    line: int = position()
    column: int = position()


@dataclass
class If(Statement):
    condition: Expression
    then_block: List[Statement]
    else_block: Optional[List[Statement]] = None
    line: int = position()
    column: int = position()


@dataclass
class Repeat(Statement):
    count: Expression
    body: List[Statement]
    line: int = position()
    column: int = position()


@dataclass
class FunctionDef(Statement):
    name: str
    parameters: List[str]
    body: List[Statement]
    line: int = position()
    column: int = position()


@dataclass
class Return(Statement):
    value: Optional[Expression] = None
    line: int = position()
    column: int = position()


@dataclass
class Break(Statement):
    line: int = position()
    column: int = position()


@dataclass
class Continue(Statement):
    line: int = position()
    column: int = position()


@dataclass
class ExpressionStatement(Statement):
    expression: Expression
    line: int = position()
    column: int = position()


# Program root
@dataclass
class Program(ASTNode):
    statements: List[Statement]


POSITION_FIELDS = ('line', 'column')


def pretty_print_ast(node: Any, indent: int = 0) -> str:
    """Pretty print AST for debugging"""
    parts = []
    # explicit stack of text pieces and (value, indent) pairs still to render
    pending: List[Any] = [(node, indent)]

    while pending:
        item = pending.pop()
        if isinstance(item, str):
            parts.append(item)
            continue

        value, level = item
        spaces = '  ' * level

        if isinstance(value, list):
            if not value:
                parts.append('[]')
                continue
            pieces: List[Any] = ['[\n']
            for child in value:
                pieces += [f'{spaces}  ', (child, level + 1), ',\n']
            pieces.append(f'{spaces}]')
            pending.extend(reversed(pieces))
            continue

        if not isinstance(value, ASTNode):
            parts.append(repr(value))
            continue

        values = [(f.name, getattr(value, f.name)) for f in fields(value) if f.name not in POSITION_FIELDS]
        name = value.__class__.__name__

        if len(values) == 1 and not isinstance(values[0][1], (ASTNode, list)):
            parts.append(f'{name}({values[0][0]}={values[0][1]!r})')
            continue

        pieces = [f'{name}(']
        if values:
            pieces.append('\n')
            for field_name, field_value in values:
                pieces += [f'{spaces}  {field_name}=', (field_value, level + 1), ',\n']
            pieces.append(spaces)
        pieces.append(')')
        pending.extend(reversed(pieces))

    return ''.join(parts)
