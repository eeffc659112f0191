"""
FalconCore command line
Runs a Falcon program from a file, stdin or the -c option
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .ast_nodes import pretty_print_ast
from .bytecode import disassemble
from .compiler import compile_program
from .config import load_config
from .errors import FalconError
from .lexer import Lexer, TokenType, tokenize
from .parser import Parser
from .stdlib.builtin_functions import get_builtin_functions
from .vm import execute

LOG = logging.getLogger("falcon")


def setup_logging(level: int):
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        LOG.addHandler(handler)
    LOG.setLevel(level)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='falcon', description='FalconCore scripting language')
    parser.add_argument('file', nargs='?', help="Falcon source file to execute ('-' reads stdin)")
    parser.add_argument('-c', '--command', help='Program text to execute instead of a file')
    parser.add_argument('--tokens', action='store_true', help='Print the token stream before running')
    parser.add_argument('--ast', action='store_true', help='Print the AST before running')
    parser.add_argument('--disasm', action='store_true', help='Print the compiled bytecode before running')
    parser.add_argument('--trace', action='store_true', help='Log every executed instruction')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--config', help='Config file (json/toml)')
    parser.add_argument('--max-steps', type=int, help='VM instruction limit (positive)')
    parser.add_argument('--no-step-limit', action='store_true', help='Run without an instruction limit')
    parser.add_argument('--allow-network', action='store_true', help='Enable the network.scan built-in')
    parser.add_argument('--version', action='version', version=f'FalconCore {__version__}')
    return parser


def read_source(args) -> str:
    if args.command is not None:
        return args.command
    if args.file == '-':
        return sys.stdin.read()
    with open(args.file, 'r', encoding='utf-8') as f:
        return f.read()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose or args.trace else logging.WARNING)

    if args.command is None and not args.file:
        parser.print_usage(sys.stderr)
        return 1

    try:
        config = load_config(args.config)
        if args.max_steps is not None:
            config.max_steps = args.max_steps
        if args.no_step_limit:
            config.max_steps = None
        if args.trace:
            config.trace = True
        if args.allow_network:
            config.allow_network = True
        config.validate()
    except (OSError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    try:
        source = read_source(args)
    except FileNotFoundError:
        print(f"Error: File '{args.file}' not found", file=sys.stderr)
        return 1

    try:
        if args.tokens:
            print("Tokens:")
            for token in tokenize(source):
                if token.type != TokenType.EOF:
                    print(f"  {token.line}:{token.column} {token.type.name}: {token.value!r}")
            print()

        ast = Parser(Lexer(source)).parse()
        if args.ast:
            print("AST:")
            print(pretty_print_ast(ast))
            print()

        builtins = get_builtin_functions(config)
        program = compile_program(ast, builtin_names=builtins.names())
        if args.disasm:
            print(disassemble(program))
            print()

        result = execute(program, config=config, builtins=builtins)
        LOG.debug("program finished in %d steps", result["steps"])
    except FalconError as e:
        print(e, file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
