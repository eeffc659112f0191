"""
FalconCore error taxonomy
Every failure in the pipeline surfaces as one of these, never as a bare abort.
"""

from typing import Any, Optional


class FalconError(Exception):
    """Base class for all structured FalconCore failures"""

    kind = "error"

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(self.format())

    def format(self) -> str:
        label = self.kind.capitalize()
        if self.line is not None and self.column is not None:
            return f"{label} error at line {self.line}, column {self.column}: {self.message}"
        if self.line is not None:
            return f"{label} error at line {self.line}: {self.message}"
        return f"{label} error: {self.message}"


class LexError(FalconError):
    kind = "lexical"


class ParseError(FalconError):
    kind = "syntax"

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None,
                 expected: Any = None, found: Any = None):
        self.expected = expected
        self.found = found
        super().__init__(message, line, column)


class CompileError(FalconError):
    kind = "compile"

    def __init__(self, message: str, node: Any = None):
        self.node = node
        super().__init__(message, getattr(node, "line", None), getattr(node, "column", None))


class FalconRuntimeError(FalconError):
    kind = "runtime"

    def __init__(self, message: str, ip: Optional[int] = None, opcode: Any = None,
                 line: Optional[int] = None, column: Optional[int] = None):
        self.ip = ip
        self.opcode = opcode
        super().__init__(message, line, column)

    def format(self) -> str:
        text = super().format()
        if self.ip is not None:
            name = getattr(self.opcode, "name", self.opcode)
            text += f" (ip={self.ip:04d}, op={name})"
        return text


class VMInternalError(FalconRuntimeError):
    """Stack, loop or frame discipline violated: malformed bytecode, not user error"""

    kind = "internal"
