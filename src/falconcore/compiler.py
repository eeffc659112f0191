"""
FalconCore Compiler
Single pass AST -> bytecode translation with backpatched jump targets
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .ast_nodes import *
from .bytecode import JUMP_OPCODES, CompiledProgram, FunctionInfo, Opcode
from .errors import CompileError
from .parser import parse_source
from .stdlib.builtin_functions import DEFAULT_BUILTIN_NAMES

LOG = logging.getLogger("falcon.compiler")

BINARY_OPCODES = {
    '+': Opcode.ADD,
    '-': Opcode.SUB,
    '*': Opcode.MUL,
    '/': Opcode.DIV,
    '==': Opcode.EQ,
    '!=': Opcode.NE,
    '<': Opcode.LT,
    '<=': Opcode.LE,
    '>': Opcode.GT,
    '>=': Opcode.GE,
    'and': Opcode.AND,
    'or': Opcode.OR,
}

UNARY_OPCODES = {
    '-': Opcode.NEG,
    'not': Opcode.NOT,
}


@dataclass
class LoopContext:
    end_jumps: List[int] = field(default_factory=list)       # LOOP_BREAK sites
    continue_jumps: List[int] = field(default_factory=list)  # JUMP-to-REPEAT_END sites


@dataclass
class Scope:
    """Names declared in one environment; True marks a constant."""
    declared: Dict[str, bool] = field(default_factory=dict)
    loops: List[LoopContext] = field(default_factory=list)


class Compiler:
    def __init__(self, builtin_names: Optional[Iterable[str]] = None):
        self.builtin_names = set(DEFAULT_BUILTIN_NAMES if builtin_names is None else builtin_names)
        self.program = CompiledProgram()
        self.declarations: Dict[str, FunctionDef] = {}
        self.scope = Scope()

    def compile(self, ast: Program) -> CompiledProgram:
        self.program = CompiledProgram()
        self.declarations = {}
        self.scope = Scope()

        self.collect_functions(ast.statements)

        for statement in ast.statements:
            if isinstance(statement, FunctionDef):
                continue  # hoisted below the program-ending RETURN
            self.compile_statement(statement)
        self.emit(Opcode.RETURN)

        for definition in self.declarations.values():
            self.compile_function(definition)

        self.check_jump_targets()
        LOG.debug("compiled %d instructions, %d constants, %d functions",
                  len(self.program.instructions), len(self.program.constants),
                  len(self.program.functions))
        return self.program

    def collect_functions(self, statements: List[Statement]):
        for statement in statements:
            if not isinstance(statement, FunctionDef):
                continue
            if statement.name in self.declarations:
                raise CompileError(f"Duplicate definition of function '{statement.name}'", statement)
            if statement.name in self.builtin_names:
                raise CompileError(f"Function '{statement.name}' shadows a built-in", statement)
            if len(set(statement.parameters)) != len(statement.parameters):
                raise CompileError(f"Duplicate parameter name in function '{statement.name}'", statement)
            self.declarations[statement.name] = statement

    def compile_function(self, definition: FunctionDef):
        address = len(self.program.instructions)
        self.program.functions[definition.name] = FunctionInfo(tuple(definition.parameters), address)

        self.scope = Scope({name: False for name in definition.parameters})
        for statement in definition.body:
            self.compile_statement(statement)
        # falling off the end returns 0
        self.emit(Opcode.LOAD_CONST, self.program.add_constant(0), definition)
        self.emit(Opcode.RETURN, node=definition)

    def emit(self, opcode: Opcode, operand=None, node: Optional[ASTNode] = None) -> int:
        position = None
        if node is not None and getattr(node, 'line', 0):
            position = (node.line, node.column)
        return self.program.emit(opcode, operand, position)

    def here(self) -> int:
        return len(self.program.instructions)

    # Statements
    def compile_statement(self, node: Statement):
        if isinstance(node, VariableDecl):
            self.compile_declaration(node)
        elif isinstance(node, Print):
            self.compile_expression(node.expr)
            self.emit(Opcode.PRINT, node=node)
        elif isinstance(node, If):
            self.compile_if(node)
        elif isinstance(node, Repeat):
            self.compile_repeat(node)
        elif isinstance(node, Return):
            if node.value is not None:
                self.compile_expression(node.value)
            else:
                self.emit(Opcode.LOAD_CONST, self.program.add_constant(0), node)
            self.emit(Opcode.RETURN, node=node)
        elif isinstance(node, Break):
            loop = self.current_loop(node, 'break')
            loop.end_jumps.append(self.emit(Opcode.LOOP_BREAK, None, node))
        elif isinstance(node, Continue):
            loop = self.current_loop(node, 'continue')
            loop.continue_jumps.append(self.emit(Opcode.JUMP, None, node))
        elif isinstance(node, ExpressionStatement):
            self.compile_expression(node.expression)
            self.emit(Opcode.POP, node=node)
        elif isinstance(node, FunctionDef):
            raise CompileError(f"Function '{node.name}' must be defined at top level", node)
        else:
            raise CompileError(f"Unsupported statement {node.__class__.__name__}", node)

    def compile_declaration(self, node: VariableDecl):
        if self.scope.declared.get(node.name):
            raise CompileError(f"Cannot redeclare constant '{node.name}'", node)
        self.compile_expression(node.initializer)
        self.emit(Opcode.STORE_VAR, node.name, node)
        self.scope.declared[node.name] = node.constant

    def compile_if(self, node: If):
        end_jumps = []
        while True:
            self.compile_expression(node.condition)
            jump_if_false = self.emit(Opcode.JUMP_IF_FALSE, None, node)
            self.compile_block(node.then_block)
            end_jumps.append(self.emit(Opcode.JUMP, None, node))
            self.program.patch(jump_if_false, self.here())

            else_block = node.else_block
            if else_block is not None and len(else_block) == 1 and isinstance(else_block[0], If):
                node = else_block[0]  # elseif
                continue
            if else_block is not None:
                self.compile_block(else_block)
            break

        for index in end_jumps:
            self.program.patch(index, self.here())

    def compile_repeat(self, node: Repeat):
        self.compile_expression(node.count)
        repeat_start = self.emit(Opcode.REPEAT_START, None, node)

        loop = LoopContext()
        self.scope.loops.append(loop)
        self.compile_block(node.body)
        self.scope.loops.pop()

        repeat_end = self.emit(Opcode.REPEAT_END, node=node)
        after = self.here()
        self.program.patch(repeat_start, after)
        for index in loop.end_jumps:
            self.program.patch(index, after)
        for index in loop.continue_jumps:
            self.program.patch(index, repeat_end)

    def compile_block(self, statements: List[Statement]):
        for statement in statements:
            self.compile_statement(statement)

    def current_loop(self, node: Statement, keyword: str) -> LoopContext:
        if not self.scope.loops:
            raise CompileError(f"'{keyword}' outside of a repeat loop", node)
        return self.scope.loops[-1]

    # Expressions
    def compile_expression(self, node: Expression):
        # explicit stack: operator chains may be thousands of nodes deep
        pending = [(node, False)]
        while pending:
            current, operands_done = pending.pop()
            if isinstance(current, BinaryOp):
                opcode = BINARY_OPCODES.get(current.operator)
                if opcode is None:
                    raise CompileError(f"Unsupported binary operator '{current.operator}'", current)
                if operands_done:
                    self.emit(opcode, node=current)
                else:
                    pending.append((current, True))
                    pending.append((current.right, False))
                    pending.append((current.left, False))
            elif isinstance(current, UnaryOp):
                opcode = UNARY_OPCODES.get(current.operator)
                if opcode is None:
                    raise CompileError(f"Unsupported unary operator '{current.operator}'", current)
                if operands_done:
                    self.emit(opcode, node=current)
                else:
                    pending.append((current, True))
                    pending.append((current.operand, False))
            else:
                self.compile_operand(current)

    def compile_operand(self, node: Expression):
        if isinstance(node, (NumberLiteral, StringLiteral)):
            self.emit(Opcode.LOAD_CONST, self.program.add_constant(node.value), node)
        elif isinstance(node, Identifier):
            self.emit(Opcode.LOAD_VAR, node.name, node)
        elif isinstance(node, FunctionCall):
            if node.name not in self.declarations and node.name not in self.builtin_names:
                raise CompileError(f"Call to undefined function '{node.name}'", node)
            self.compile_call(node.name, node.arguments, node)
        elif isinstance(node, BuiltinCall):
            self.compile_call(node.name, node.arguments, node)
        elif isinstance(node, NetworkScanCall):
            self.compile_call('network.scan', [node.subnet], node)
        else:
            raise CompileError(f"Unsupported expression {node.__class__.__name__}", node)

    def compile_call(self, name: str, arguments: List[Expression], node: Expression):
        for argument in arguments:
            self.compile_expression(argument)
        self.emit(Opcode.CALL, (name, len(arguments)), node)

    def check_jump_targets(self):
        size = len(self.program.instructions)
        for index, instruction in enumerate(self.program.instructions):
            if instruction.opcode in JUMP_OPCODES:
                target = instruction.operand
                if not isinstance(target, int) or not 0 <= target <= size:
                    raise CompileError(f"Internal error: {instruction} at {index:04d} has no valid target")


def compile_program(ast: Program, builtin_names: Optional[Iterable[str]] = None) -> CompiledProgram:
    return Compiler(builtin_names).compile(ast)


def compile_source(source: str, builtin_names: Optional[Iterable[str]] = None) -> CompiledProgram:
    """Lex, parse and compile `source`."""
    return compile_program(parse_source(source), builtin_names)
