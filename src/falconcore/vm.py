"""
FalconCore Virtual Machine
Stack-based bytecode interpreter with call frames and loop frames

Each VM instance owns its operand stack, environments and frame stacks;
nothing is shared between instances, so independent programs can run on
separate threads by giving each its own VM.
"""

import logging
import math
import sys
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TextIO

from .bytecode import CompiledProgram, Instruction, Opcode, Value
from .compiler import compile_source
from .config import FalconConfig
from .errors import FalconRuntimeError, VMInternalError
from .lexer import INT64_MAX, INT64_MIN
from .stdlib.builtin_functions import BuiltinRegistry, get_builtin_functions, is_integer, is_number

LOG = logging.getLogger("falcon.vm")

Environment = Dict[str, Value]


@dataclass
class CallFrame:
    return_address: int
    saved_environment: Environment
    loop_depth: int
    function: str


@dataclass
class LoopFrame:
    start_address: int
    remaining: int


def type_name(value: Any) -> str:
    if isinstance(value, str):
        return "string"
    if is_number(value):
        return "number"
    return type(value).__name__


def render(value: Value) -> str:
    """Numbers as positional decimal, strings verbatim"""
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        # shortest round-trip digits, never exponent notation
        text = format(Decimal(repr(value)), "f")
        return text if "." in text else text + ".0"
    if is_number(value):
        return str(value)
    raise VMInternalError(f"Cannot print non-language value {value!r}")


class VM:
    def __init__(self, program: CompiledProgram,
                 builtins: Optional[BuiltinRegistry] = None,
                 config: Optional[FalconConfig] = None,
                 output: Optional[TextIO] = None):
        self.program = program
        self.config = config or FalconConfig()
        self.builtins = builtins if builtins is not None else get_builtin_functions(self.config)
        self.output = output if output is not None else sys.stdout

        self.stack: List[Value] = []
        self.globals: Environment = {}
        self.env: Environment = self.globals
        self.call_stack: List[CallFrame] = []
        self.loop_stack: List[LoopFrame] = []
        self.ip = 0
        self.steps = 0
        self.running = False

        self.handlers: Dict[Opcode, Callable[[Any], None]] = {
            Opcode.LOAD_CONST: self.op_load_const,
            Opcode.LOAD_VAR: self.op_load_var,
            Opcode.STORE_VAR: self.op_store_var,
            Opcode.ADD: self.op_add,
            Opcode.SUB: self.op_sub,
            Opcode.MUL: self.op_mul,
            Opcode.DIV: self.op_div,
            Opcode.NEG: self.op_neg,
            Opcode.EQ: self.op_eq,
            Opcode.NE: self.op_ne,
            Opcode.LT: self.op_lt,
            Opcode.LE: self.op_le,
            Opcode.GT: self.op_gt,
            Opcode.GE: self.op_ge,
            Opcode.AND: self.op_and,
            Opcode.OR: self.op_or,
            Opcode.NOT: self.op_not,
            Opcode.PRINT: self.op_print,
            Opcode.POP: self.op_pop,
            Opcode.JUMP_IF_FALSE: self.op_jump_if_false,
            Opcode.JUMP: self.op_jump,
            Opcode.REPEAT_START: self.op_repeat_start,
            Opcode.REPEAT_END: self.op_repeat_end,
            Opcode.LOOP_BREAK: self.op_loop_break,
            Opcode.CALL: self.op_call,
            Opcode.RETURN: self.op_return,
        }

    # ---------------------------
    # Fetch / decode / execute
    # ---------------------------
    def run(self) -> Dict[str, Any]:
        code = self.program.instructions
        max_steps = self.config.max_steps
        trace = self.config.trace
        self.running = True
        LOG.debug("executing %d instructions", len(code))

        while self.running and self.ip < len(code):
            ip = self.ip
            instruction = code[ip]
            self.steps += 1
            if max_steps is not None and self.steps > max_steps:
                raise self.located(FalconRuntimeError(
                    f"Instruction limit of {max_steps} exceeded (possible infinite loop)"), ip, instruction)
            if trace:
                LOG.debug("ip=%04d %-24s stack=%r", ip, instruction, self.stack)

            handler = self.handlers.get(instruction.opcode)
            if handler is None:
                raise self.located(VMInternalError(f"Unknown opcode {instruction.opcode!r}"), ip, instruction)

            self.ip = ip + 1
            try:
                handler(instruction.operand)
            except FalconRuntimeError as error:
                self.located(error, ip, instruction)
                raise

        self.running = False
        LOG.debug("finished after %d steps", self.steps)
        return {"steps": self.steps}

    def located(self, error: FalconRuntimeError, ip: int, instruction: Instruction) -> FalconRuntimeError:
        """Attach the failing instruction and its source position"""
        if error.ip is None:
            error.ip = ip
            error.opcode = instruction.opcode
            position = self.program.position_of(ip)
            if position:
                error.line, error.column = position
            error.args = (error.format(),)
        return error

    # ---------------------------
    # Stack helpers
    # ---------------------------
    def push(self, value: Value):
        self.stack.append(value)

    def pop(self) -> Value:
        if not self.stack:
            raise VMInternalError("Operand stack underflow")
        return self.stack.pop()

    def pop_pair(self):
        right = self.pop()
        left = self.pop()
        return left, right

    def jump(self, target: Any):
        if not is_integer(target) or not 0 <= target <= len(self.program.instructions):
            raise VMInternalError(f"Jump target {target!r} out of range")
        self.ip = target

    def checked(self, result: Value) -> Value:
        if is_integer(result) and not INT64_MIN <= result <= INT64_MAX:
            raise FalconRuntimeError("Integer overflow")
        if isinstance(result, float) and not math.isfinite(result):
            raise FalconRuntimeError("Float overflow")
        return result

    def numbers(self, symbol: str):
        left, right = self.pop_pair()
        if not (is_number(left) and is_number(right)):
            raise FalconRuntimeError(
                f"Type error: '{symbol}' needs two numbers, got {type_name(left)} and {type_name(right)}")
        return left, right

    def condition(self, value: Value, what: str) -> bool:
        if not is_number(value):
            raise FalconRuntimeError(f"Type error: {what} must be a number, got {type_name(value)}")
        return value != 0

    # ---------------------------
    # Opcode handlers
    # ---------------------------
    def op_load_const(self, index):
        if not is_integer(index) or not 0 <= index < len(self.program.constants):
            raise VMInternalError(f"Constant index {index!r} out of range")
        self.push(self.program.constants[index])

    def op_load_var(self, name):
        if name in self.env:
            self.push(self.env[name])
        elif name in self.globals:
            self.push(self.globals[name])
        else:
            raise FalconRuntimeError(f"Undefined variable '{name}'")

    def op_store_var(self, name):
        self.env[name] = self.pop()

    def op_add(self, _):
        left, right = self.numbers('+')
        self.push(self.checked(left + right))

    def op_sub(self, _):
        left, right = self.numbers('-')
        self.push(self.checked(left - right))

    def op_mul(self, _):
        left, right = self.numbers('*')
        self.push(self.checked(left * right))

    def op_div(self, _):
        left, right = self.numbers('/')
        if right == 0:
            raise FalconRuntimeError("Division by zero")
        if is_integer(left) and is_integer(right):
            # truncate toward zero
            quotient = abs(left) // abs(right)
            self.push(self.checked(-quotient if (left < 0) != (right < 0) else quotient))
        else:
            self.push(self.checked(left / right))

    def op_neg(self, _):
        value = self.pop()
        if not is_number(value):
            raise FalconRuntimeError(f"Type error: unary '-' needs a number, got {type_name(value)}")
        self.push(self.checked(-value))

    def op_eq(self, _):
        left, right = self.pop_pair()
        self.push(1 if type_name(left) == type_name(right) and left == right else 0)

    def op_ne(self, _):
        left, right = self.pop_pair()
        self.push(0 if type_name(left) == type_name(right) and left == right else 1)

    def ordered(self, symbol: str):
        left, right = self.pop_pair()
        if is_number(left) and is_number(right):
            return left, right
        if isinstance(left, str) and isinstance(right, str):
            return left, right
        raise FalconRuntimeError(
            f"Type error: cannot compare {type_name(left)} and {type_name(right)} with '{symbol}'")

    def op_lt(self, _):
        left, right = self.ordered('<')
        self.push(1 if left < right else 0)

    def op_le(self, _):
        left, right = self.ordered('<=')
        self.push(1 if left <= right else 0)

    def op_gt(self, _):
        left, right = self.ordered('>')
        self.push(1 if left > right else 0)

    def op_ge(self, _):
        left, right = self.ordered('>=')
        self.push(1 if left >= right else 0)

    def op_and(self, _):
        left, right = self.pop_pair()
        left_true = self.condition(left, "operand of 'and'")
        right_true = self.condition(right, "operand of 'and'")
        self.push(1 if left_true and right_true else 0)

    def op_or(self, _):
        left, right = self.pop_pair()
        left_true = self.condition(left, "operand of 'or'")
        right_true = self.condition(right, "operand of 'or'")
        self.push(1 if left_true or right_true else 0)

    def op_not(self, _):
        self.push(0 if self.condition(self.pop(), "operand of 'not'") else 1)

    def op_print(self, _):
        self.output.write(render(self.pop()) + "\n")

    def op_pop(self, _):
        self.pop()

    def op_jump_if_false(self, target):
        if not self.condition(self.pop(), "condition"):
            self.jump(target)

    def op_jump(self, target):
        self.jump(target)

    def op_repeat_start(self, exit_target):
        count = self.pop()
        if not is_integer(count):
            raise FalconRuntimeError(f"Type error: repeat count must be an integer, got {count!r}")
        if count <= 0:
            self.jump(exit_target)
        else:
            self.loop_stack.append(LoopFrame(self.ip, count))

    def current_loop(self) -> LoopFrame:
        floor = self.call_stack[-1].loop_depth if self.call_stack else 0
        if len(self.loop_stack) <= floor:
            raise VMInternalError("Loop end without an active repeat")
        return self.loop_stack[-1]

    def op_repeat_end(self, _):
        frame = self.current_loop()
        frame.remaining -= 1
        if frame.remaining > 0:
            self.ip = frame.start_address
        else:
            self.loop_stack.pop()

    def op_loop_break(self, target):
        self.current_loop()
        self.loop_stack.pop()
        self.jump(target)

    def op_call(self, operand):
        try:
            name, argc = operand
        except (TypeError, ValueError):
            raise VMInternalError(f"Malformed CALL operand {operand!r}") from None
        if len(self.stack) < argc:
            raise VMInternalError(f"Operand stack underflow calling '{name}'")

        function = self.program.functions.get(name)
        if function is not None:
            if argc != len(function.parameters):
                raise FalconRuntimeError(
                    f"Function '{name}' expects {len(function.parameters)} argument(s), got {argc}")
            if len(self.call_stack) >= self.config.max_call_depth:
                raise FalconRuntimeError(f"Call stack overflow calling '{name}'")
            locals_: Environment = {}
            for parameter in reversed(function.parameters):
                locals_[parameter] = self.pop()
            self.call_stack.append(CallFrame(self.ip, self.env, len(self.loop_stack), name))
            self.env = locals_
            self.jump(function.address)
            return

        if name in self.builtins:
            arguments = [self.pop() for _ in range(argc)]
            arguments.reverse()
            result = self.call_builtin(name, arguments)
            self.push(result)
            return

        raise FalconRuntimeError(f"Undefined function '{name}'")

    def call_builtin(self, name: str, arguments: List[Value]) -> Value:
        try:
            result = self.builtins.call(name, arguments)
        except FalconRuntimeError:
            raise
        except Exception as error:
            raise FalconRuntimeError(f"Built-in '{name}' failed: {error}") from error
        if not (isinstance(result, str) or is_number(result)):
            raise FalconRuntimeError(f"Built-in '{name}' returned unsupported value {result!r}")
        return self.checked(result)

    def op_return(self, _):
        if not self.call_stack:
            self.running = False
            return
        value = self.pop()
        frame = self.call_stack.pop()
        del self.loop_stack[frame.loop_depth:]
        self.env = frame.saved_environment
        self.ip = frame.return_address
        self.push(value)


def execute(program: CompiledProgram, output: Optional[TextIO] = None,
            config: Optional[FalconConfig] = None,
            builtins: Optional[BuiltinRegistry] = None) -> Dict[str, Any]:
    """Run a compiled program on a fresh VM"""
    return VM(program, builtins=builtins, config=config, output=output).run()


def run_source(source: str, output: Optional[TextIO] = None,
               config: Optional[FalconConfig] = None,
               builtins: Optional[BuiltinRegistry] = None) -> Dict[str, Any]:
    """Lex, parse, compile and run `source` on a fresh VM"""
    config = config or FalconConfig()
    builtins = builtins if builtins is not None else get_builtin_functions(config)
    program = compile_source(source, builtin_names=builtins.names())
    return execute(program, output=output, config=config, builtins=builtins)
