#!/usr/bin/env python3
"""
FalconCore Host Tests
Built-in functions, configuration loading and the command line
"""

import io
import json
import os
import sys
import tempfile
import time
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from falconcore.cli import main
from falconcore.config import FalconConfig, load_config
from falconcore.errors import FalconRuntimeError
from falconcore.stdlib import BuiltinRegistry, get_builtin_functions
from falconcore.stdlib import builtin_functions
from falconcore.vm import run_source


def run(source, builtins=None, **settings):
    output = io.StringIO()
    run_source(source, output=output, config=FalconConfig(**settings), builtins=builtins)
    return output.getvalue()


class TestBuiltins(unittest.TestCase):

    def test_time_now(self):
        before = int(time.time() * 1000)
        value = int(run('print time.now()'))
        after = int(time.time() * 1000)
        self.assertTrue(before <= value <= after)

    def test_wait(self):
        self.assertEqual(run('print wait(0)'), "0\n")
        with self.assertRaises(FalconRuntimeError):
            run('wait(0 - 1)')

    def test_crypto_random(self):
        values = [int(line) for line in run('repeat 20 { print crypto.random(10) }').split()]
        self.assertEqual(len(values), 20)
        self.assertTrue(all(0 <= value < 10 for value in values))
        self.assertGreaterEqual(int(run('print crypto.random()')), 0)

    def test_crypto_random_rejects_bad_bound(self):
        for source in ('print crypto.random("x")', 'print crypto.random(0)'):
            with self.subTest(source=source):
                with self.assertRaises(FalconRuntimeError):
                    run(source)

    def test_arity_is_checked(self):
        with self.assertRaises(FalconRuntimeError) as ctx:
            run('print time.now(1)')
        self.assertIn("expects 0 argument(s), got 1", str(ctx.exception))

        with self.assertRaises(FalconRuntimeError) as ctx:
            run('print crypto.random(1, 2)')
        self.assertIn("0 to 1", str(ctx.exception))

    def test_network_scan_disabled_by_default(self):
        with self.assertRaises(FalconRuntimeError) as ctx:
            run('print network.scan("10.0.0")')
        self.assertIn("disabled", str(ctx.exception))

    def test_network_scan(self):
        alive = {"10.0.0.1", "10.0.0.5"}
        with mock.patch.object(builtin_functions, 'host_responds',
                               side_effect=lambda host, port, timeout: host in alive) as responds:
            output = run('print network.scan("10.0.0")', allow_network=True, scan_port=22)
        self.assertEqual(output, "10.0.0.1,10.0.0.5\n")
        self.assertEqual(responds.call_count, 254)
        responds.assert_any_call("10.0.0.254", 22, 0.05)

    def test_network_scan_rejects_bad_subnets(self):
        for source in ('network.scan("10.0")', 'network.scan("10.0.999")', 'network.scan(42)'):
            with self.subTest(source=source):
                with self.assertRaises(FalconRuntimeError):
                    run(source, allow_network=True)

    def test_host_responds(self):
        with mock.patch.object(builtin_functions.socket, 'create_connection',
                               side_effect=OSError("refused")):
            self.assertFalse(builtin_functions.host_responds("10.0.0.1", 80, 0.01))
        with mock.patch.object(builtin_functions.socket, 'create_connection',
                               return_value=mock.MagicMock()) as connect:
            self.assertTrue(builtin_functions.host_responds("10.0.0.1", 80, 0.01))
        connect.assert_called_once_with(("10.0.0.1", 80), timeout=0.01)

    def test_subnet_hosts(self):
        hosts = builtin_functions.subnet_hosts("192.168.1")
        self.assertEqual(len(hosts), 254)
        self.assertEqual(hosts[0], "192.168.1.1")
        self.assertEqual(hosts[-1], "192.168.1.254")

    def test_custom_registry(self):
        registry = BuiltinRegistry()
        registry.register("double", lambda n: n * 2, 1)
        self.assertEqual(run('print double(4)', builtins=registry), "8\n")
        self.assertIn("double", registry)
        self.assertEqual(registry.names(), ["double"])

    def test_failing_builtin_becomes_runtime_error(self):
        def boom():
            raise ValueError("kaboom")

        registry = BuiltinRegistry()
        registry.register("boom", boom)
        with self.assertRaises(FalconRuntimeError) as ctx:
            run('boom()', builtins=registry)
        self.assertIn("kaboom", str(ctx.exception))

    def test_builtin_result_must_be_a_language_value(self):
        registry = BuiltinRegistry()
        registry.register("listy", lambda: [1, 2])
        registry.register("nothing", lambda: None)
        with self.assertRaises(FalconRuntimeError):
            run('print listy()', builtins=registry)
        self.assertEqual(run('print nothing()', builtins=registry), "0\n")

    def test_default_registry_names(self):
        self.assertEqual(sorted(get_builtin_functions().names()),
                         ["crypto.random", "network.scan", "time.now", "wait"])


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name, text):
        path = os.path.join(self.tmp.name, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path

    def test_defaults(self):
        config = FalconConfig()
        self.assertEqual(config.max_steps, 1_000_000)
        self.assertEqual(config.max_call_depth, 1000)
        self.assertFalse(config.allow_network)
        self.assertFalse(config.trace)

    def test_load_json(self):
        path = self.write('falcon.json', json.dumps({"max_steps": 500, "trace": True}))
        config = load_config(path)
        self.assertEqual(config.max_steps, 500)
        self.assertTrue(config.trace)
        self.assertEqual(config.max_call_depth, 1000)

    def test_load_toml(self):
        path = self.write('falcon.toml', 'max_call_depth = 64\nallow_network = true\n')
        config = load_config(path)
        self.assertEqual(config.max_call_depth, 64)
        self.assertTrue(config.allow_network)

    def test_load_toml_falcon_table(self):
        path = self.write('project.toml', '[falcon]\nscan_port = 8080\n\n[other]\nname = "x"\n')
        self.assertEqual(load_config(path).scan_port, 8080)

    def test_default_files_in_working_directory(self):
        self.write('falcon.json', json.dumps({"max_steps": 7}))
        previous = os.getcwd()
        os.chdir(self.tmp.name)
        try:
            self.assertEqual(load_config().max_steps, 7)
        finally:
            os.chdir(previous)

    def test_no_files_means_defaults(self):
        previous = os.getcwd()
        os.chdir(self.tmp.name)
        try:
            self.assertEqual(load_config(), FalconConfig())
        finally:
            os.chdir(previous)

    def test_invalid_configs(self):
        cases = {
            'a.json': json.dumps({"max_step": 5}),
            'b.json': json.dumps({"max_steps": -1}),
            'c.json': json.dumps({"allow_network": "yes"}),
            'd.json': json.dumps([1, 2]),
            'e.yaml': 'max_steps: 5',
        }
        for name, text in cases.items():
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    load_config(self.write(name, text))

    def test_round_trip_dict(self):
        config = FalconConfig.from_dict({"scan_workers": 4})
        self.assertEqual(config.to_dict()["scan_workers"], 4)


class TestCLI(unittest.TestCase):

    def invoke(self, *argv):
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_command(self):
        code, out, err = self.invoke('-c', 'print 1 + 1')
        self.assertEqual(code, 0)
        self.assertEqual(out, "2\n")
        self.assertEqual(err, "")

    def test_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'hello.falcon')
            with open(path, 'w', encoding='utf-8') as f:
                f.write('fn greet(name) { print name }\ngreet("falcon")\n')
            code, out, _ = self.invoke(path)
        self.assertEqual(code, 0)
        self.assertEqual(out, "falcon\n")

    def test_missing_file(self):
        code, _, err = self.invoke('does-not-exist.falcon')
        self.assertEqual(code, 1)
        self.assertIn("not found", err)

    def test_no_source(self):
        code, _, err = self.invoke()
        self.assertEqual(code, 1)
        self.assertIn("usage", err)

    def test_errors_are_reported(self):
        code, _, err = self.invoke('-c', 'print "abc')
        self.assertEqual(code, 1)
        self.assertIn("Lexical error at line 1, column 7", err)

        code, _, err = self.invoke('-c', 'print 1 / 0')
        self.assertEqual(code, 1)
        self.assertIn("Runtime error", err)
        self.assertIn("Division by zero", err)

    def test_dumps(self):
        code, out, _ = self.invoke('--tokens', '--ast', '--disasm', '-c', 'print 3')
        self.assertEqual(code, 0)
        self.assertIn("Tokens:", out)
        self.assertIn("1:1 PRINT", out)
        self.assertIn("AST:", out)
        self.assertIn("code:", out)
        self.assertTrue(out.endswith("3\n"))

    def test_max_steps_override(self):
        code, _, err = self.invoke('--max-steps', '10', '-c', 'repeat 100 { print 1 }')
        self.assertEqual(code, 1)
        self.assertIn("Instruction limit of 10", err)

    def test_max_steps_must_be_positive(self):
        for value in ('0', '-5'):
            with self.subTest(value=value):
                code, out, err = self.invoke('--max-steps', value, '-c', 'print 1')
                self.assertEqual(code, 1)
                self.assertEqual(out, "")
                self.assertIn("Config error: max_steps", err)

    def test_no_step_limit(self):
        code, out, _ = self.invoke('--max-steps', '10', '--no-step-limit',
                                   '-c', 'repeat 100 { let x = 1 }\nprint "done"')
        self.assertEqual(code, 0)
        self.assertEqual(out, "done\n")

    def test_bad_config(self):
        code, _, err = self.invoke('--config', 'missing.toml', '-c', 'print 1')
        self.assertEqual(code, 1)
        self.assertIn("Config error", err)


if __name__ == '__main__':
    unittest.main(verbosity=2)
