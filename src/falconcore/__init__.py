"""
FalconCore: lexer, parser, bytecode compiler and stack VM for the Falcon
scripting language
"""

from .bytecode import CompiledProgram, Instruction, Opcode, disassemble
from .compiler import Compiler, compile_program, compile_source
from .config import FalconConfig, load_config
from .errors import (CompileError, FalconError, FalconRuntimeError, LexError,
                     ParseError, VMInternalError)
from .lexer import Lexer, Token, TokenType, tokenize
from .parser import Parser, parse_source
from .vm import VM, execute, run_source

__version__ = "0.1.0"
