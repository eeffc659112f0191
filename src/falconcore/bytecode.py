"""
FalconCore bytecode
Opcodes, the compiled program container and a disassembler
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple, Union

Value = Union[int, float, str]


class Opcode(Enum):
    LOAD_CONST = auto()     # operand: constant pool index
    LOAD_VAR = auto()       # operand: name
    STORE_VAR = auto()      # operand: name
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    NEG = auto()
    EQ = auto()
    NE = auto()
    LT = auto()
    LE = auto()
    GT = auto()
    GE = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    PRINT = auto()
    POP = auto()
    JUMP_IF_FALSE = auto()  # operand: target address
    JUMP = auto()           # operand: target address
    REPEAT_START = auto()   # operand: address after the matching REPEAT_END
    REPEAT_END = auto()
    LOOP_BREAK = auto()     # operand: address after the matching REPEAT_END
    CALL = auto()           # operand: (name, argument count)
    RETURN = auto()


JUMP_OPCODES = (Opcode.JUMP, Opcode.JUMP_IF_FALSE, Opcode.REPEAT_START, Opcode.LOOP_BREAK)


@dataclass(frozen=True)
class Instruction:
    opcode: Opcode
    operand: Any = None

    def __str__(self) -> str:
        if self.operand is None:
            return self.opcode.name
        if self.opcode == Opcode.CALL:
            name, argc = self.operand
            return f"{self.opcode.name} {name}/{argc}"
        return f"{self.opcode.name} {self.operand}"


@dataclass(frozen=True)
class FunctionInfo:
    parameters: Tuple[str, ...]
    address: int


@dataclass
class CompiledProgram:
    """Output of the compiler: everything the VM needs, resolved ahead of time."""

    constants: List[Value] = field(default_factory=list)
    instructions: List[Instruction] = field(default_factory=list)
    functions: Dict[str, FunctionInfo] = field(default_factory=dict)
    positions: List[Optional[Tuple[int, int]]] = field(default_factory=list)

    def add_constant(self, value: Value) -> int:
        self.constants.append(value)
        return len(self.constants) - 1

    def emit(self, opcode: Opcode, operand: Any = None,
             position: Optional[Tuple[int, int]] = None) -> int:
        # returns instruction index (useful for jumps)
        self.instructions.append(Instruction(opcode, operand))
        self.positions.append(position)
        return len(self.instructions) - 1

    def patch(self, index: int, operand: Any):
        opcode = self.instructions[index].opcode
        self.instructions[index] = Instruction(opcode, operand)

    def position_of(self, index: int) -> Optional[Tuple[int, int]]:
        if 0 <= index < len(self.positions):
            return self.positions[index]
        return None


def disassemble(program: CompiledProgram) -> str:
    """Human-readable listing of constants, functions and code"""
    lines = ["constants:"]
    for index, value in enumerate(program.constants):
        lines.append(f"  [{index}] {value!r}")

    entries = {info.address: name for name, info in program.functions.items()}
    if program.functions:
        lines.append("functions:")
        for name, info in program.functions.items():
            lines.append(f"  {name}({', '.join(info.parameters)}) @ {info.address:04d}")

    lines.append("code:")
    for index, instruction in enumerate(program.instructions):
        if index in entries:
            lines.append(f"{entries[index]}:")
        text = str(instruction)
        if instruction.opcode == Opcode.LOAD_CONST:
            text += f"  ; {program.constants[instruction.operand]!r}"
        lines.append(f"  {index:04d}  {text}")
    return "\n".join(lines)
