"""
Discovery engine tests (directory convention, merging, diagnostics).

Scope
- Validate file selection, nesting and index units.
- Validate that unit failures become diagnostics while the scan goes on.
- Validate extension discovery and the default file loader.

Conventions
- Test method names follow CamelCase per project convention.
- Trees are planted in a temporary directory as empty files; a mapping loader
  keyed by relative POSIX path supplies the unit values. Only the loader tests
  write real Python source.
"""

from __future__ import annotations

import sys
import tempfile
import textwrap
import time
import unittest
from pathlib import Path
from unittest import TestCase

from sprout import (
    Cardinal,
    Command,
    DiscoveryError,
    Extension,
    FaultCode,
    Flag,
    discover,
    load,
    route,
)


def noop(context):
    pass


class Units:
    """Loader over a mapping of relative path -> value (exceptions are raised)."""

    def __init__(self, root, units):
        self.root = Path(root)
        self.units = units
        self.seen = []

    def __call__(self, path):
        relative = Path(path).relative_to(self.root).as_posix()
        self.seen.append(relative)
        value = self.units[relative]
        if isinstance(value, BaseException):
            raise value
        return value


class DiscoveryCase(TestCase):

    def setUp(self):
        self.directory = tempfile.TemporaryDirectory()
        self.root = Path(self.directory.name)

    def tearDown(self):
        self.directory.cleanup()

    def plant(self, *relatives):
        for relative in relatives:
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("")

    def discover(self, units, **options):
        self.plant(*units)
        self.loader = Units(self.root, units)
        return discover(self.root, self.loader, **options)


class TestCommandDiscovery(DiscoveryCase):
    """commands/ tree construction."""

    def testFlatCommands(self):
        found = self.discover({
            "commands/status.py": {"handler": noop, "description": "Show status."},
            "commands/deploy.py": noop,
        })
        self.assertEqual([command.name for command in found.commands], ["deploy", "status"])
        self.assertEqual(found.commands[1].descr, "Show status.")
        self.assertEqual(found.diagnostics, ())

    def testDirectoryBecomesGroup(self):
        found = self.discover({
            "commands/db/migrate.py": {"handler": noop},
            "commands/db/seed.py": {"handler": noop},
        })
        self.assertEqual(len(found.commands), 1)
        db = found.commands[0]
        self.assertEqual(db.name, "db")
        self.assertIsNone(db.handler)
        self.assertEqual([child.name for child in db.children], ["migrate", "seed"])

    def testIndexConfiguresParentAfterSiblings(self):
        found = self.discover({
            "commands/db/apply.py": {"handler": noop},
            "commands/db/index.py": {"description": "Database tools.", "aliases": ("database",)},
        })
        db = found.commands[0]
        self.assertEqual(db.descr, "Database tools.")
        self.assertEqual(db.aliases, ("database",))
        self.assertEqual([child.name for child in db.children], ["apply"])

    def testIndexConfiguresParentBeforeSiblings(self):
        found = self.discover({
            "commands/db/index.py": {"description": "Database tools."},
            "commands/db/migrate.py": {"handler": noop},
        })
        db = found.commands[0]
        self.assertEqual(db.descr, "Database tools.")
        self.assertEqual([child.name for child in db.children], ["migrate"])

    def testSiblingFileConfiguresDirectory(self):
        found = self.discover({
            "commands/db.py": {"handler": noop, "children": ({"name": "status", "handler": noop},)},
            "commands/db/migrate.py": {"handler": noop},
        })
        db = found.commands[0]
        self.assertIs(db.handler, noop)
        self.assertEqual([child.name for child in db.children], ["status", "migrate"])

    def testDeepNesting(self):
        found = self.discover({
            "commands/cloud/cluster/create.py": {"handler": noop},
        })
        self.assertEqual([path for path, _ in found.commands[0].walk()], [
            ("cloud",),
            ("cloud", "cluster"),
            ("cloud", "cluster", "create"),
        ])

    def testSpecsFromMappings(self):
        found = self.discover({
            "commands/copy.py": {
                "handler": noop,
                "arguments": {"target": {"type": "text", "required": True, "description": "where"}},
                "flags": {"force": {"alias": "f"}, "retries": Flag("number", default=3)},
            },
        })
        copy = found.commands[0]
        self.assertIsInstance(copy.cardinals["target"], Cardinal)
        self.assertTrue(copy.cardinals["target"].required)
        self.assertEqual(copy.cardinals["target"].descr, "where")
        self.assertEqual(copy.flags["force"].alias, "f")
        self.assertEqual(copy.flags["retries"].default, 3)

    def testUnitKeys(self):
        def deploy(context):
            pass

        found = self.discover({
            "commands/deploy.py": {
                "handler": deploy,
                "alias": ["d"],
                "args": {"target": {"type": "text", "required": True}},
            },
        })
        command, = found.commands
        self.assertEqual(found.diagnostics, ())
        self.assertEqual(command.aliases, ("d",))
        self.assertTrue(command.cardinals["target"].required)
        self.assertIs(route(["d", "web"], found.commands).command, command)

    def testSingleAlias(self):
        found = self.discover({
            "commands/status.py": {"handler": noop, "alias": "st"},
        })
        self.assertEqual(found.commands[0].aliases, ("st",))

    def testDeclaredChildUnitKeys(self):
        found = self.discover({
            "commands/db.py": {
                "children": [{"name": "migrate", "handler": noop, "alias": ["m"], "args": {"step": {"type": "number"}}}],
            },
        })
        migrate, = found.commands[0].children
        self.assertEqual(migrate.aliases, ("m",))
        self.assertIn("step", migrate.cardinals)
        self.assertIs(route(["db", "m"], found.commands).command, migrate)

    def testBothSpellingsAreReported(self):
        found = self.discover({
            "commands/deploy.py": {"handler": noop, "alias": ["d"], "aliases": ["ship"]},
            "commands/status.py": {"handler": noop},
        })
        self.assertEqual([command.name for command in found.commands], ["status"])
        diagnostic, = found.diagnostics
        self.assertEqual(diagnostic.code, FaultCode.MALFORMED_UNIT)
        self.assertTrue(diagnostic.path.endswith("deploy.py"))

    def testReadyCommandsAreKept(self):
        found = self.discover({
            "commands/deploy.py": Command(noop, name="ship", aliases=("s",)),
        })
        self.assertEqual(found.commands[0].name, "ship")
        self.assertEqual(found.commands[0].aliases, ("s",))

    def testMalformedUnitIsReported(self):
        found = self.discover({
            "commands/a.py": {"handler": noop},
            "commands/b.py": {"handler": noop},
            "commands/broken.py": {"description": "nothing to run"},
            "commands/c.py": {"handler": noop},
            "commands/d.py": {"handler": noop},
        })
        self.assertEqual([command.name for command in found.commands], ["a", "b", "c", "d"])
        self.assertEqual(len(found.diagnostics), 1)
        diagnostic = found.diagnostics[0]
        self.assertIsInstance(diagnostic, DiscoveryError)
        self.assertEqual(diagnostic.code, FaultCode.MALFORMED_UNIT)
        self.assertTrue(diagnostic.path.endswith("broken.py"))

    def testLoadFailureIsReported(self):
        with self.assertLogs("sprout.discovery", "WARNING"):
            found = self.discover({
                "commands/deploy.py": {"handler": noop},
                "commands/explode.py": RuntimeError("boom"),
            })
        self.assertEqual([command.name for command in found.commands], ["deploy"])
        diagnostic, = found.diagnostics
        self.assertEqual(diagnostic.code, FaultCode.UNIT_LOAD_FAILED)
        self.assertIsInstance(diagnostic.cause, RuntimeError)
        self.assertTrue(diagnostic.path.endswith("explode.py"))

    def testExitingUnitIsReported(self):
        with self.assertLogs("sprout.discovery", "WARNING"):
            found = self.discover({
                "commands/deploy.py": {"handler": noop},
                "commands/quit.py": SystemExit(2),
                "commands/status.py": {"handler": noop},
            })
        self.assertEqual([command.name for command in found.commands], ["deploy", "status"])
        diagnostic, = found.diagnostics
        self.assertEqual(diagnostic.code, FaultCode.UNIT_LOAD_FAILED)
        self.assertIsInstance(diagnostic.cause, SystemExit)
        self.assertTrue(diagnostic.path.endswith("quit.py"))

    def testInvalidUnitIsReported(self):
        found = self.discover({
            "commands/deploy.py": {"handler": noop, "aliases": ("Bad Alias",)},
        })
        self.assertEqual(found.commands, ())
        self.assertEqual(found.diagnostics[0].code, FaultCode.MALFORMED_UNIT)

    def testTopLevelClash(self):
        found = self.discover({
            "commands/d.py": {"handler": noop},
            "commands/deploy.py": {"handler": noop, "aliases": ("d",)},
        })
        self.assertEqual([command.name for command in found.commands], ["d"])
        self.assertEqual(found.diagnostics[0].code, FaultCode.NAME_CLASH)

    def testSiblingClash(self):
        found = self.discover({
            "commands/db/index.py": {"children": ({"name": "migrate", "handler": noop},)},
            "commands/db/migrate.py": {"handler": noop},
        })
        self.assertEqual(len(found.commands[0].children), 1)
        self.assertEqual(found.diagnostics[0].code, FaultCode.NAME_CLASH)

    def testDoubleConfiguration(self):
        found = self.discover({
            "commands/db.py": {"handler": noop},
            "commands/db/index.py": {"handler": noop},
        })
        self.assertEqual(len(found.commands), 1)
        self.assertEqual(found.diagnostics[0].code, FaultCode.NAME_CLASH)
        self.assertTrue(found.diagnostics[0].path.endswith("index.py"))

    def testTopLevelIndexIsIgnored(self):
        found = self.discover({
            "commands/index.py": {"handler": noop},
            "commands/deploy.py": {"handler": noop},
        })
        self.assertEqual([command.name for command in found.commands], ["deploy"])
        self.assertEqual(found.diagnostics, ())

    def testSkippedFiles(self):
        self.plant(
            "commands/_private.py",
            "commands/__init__.py",
            "commands/test_deploy.py",
            "commands/deploy_test.py",
            "commands/conftest.py",
            "commands/.hidden/secret.py",
            "commands/__pycache__/deploy.py",
            "commands/_internal/tool.py",
            "commands/notes.txt",
            "commands/deploy.pyi",
        )
        found = self.discover({"commands/deploy.py": {"handler": noop}})
        self.assertEqual(self.loader.seen, ["commands/deploy.py"])
        self.assertEqual([command.name for command in found.commands], ["deploy"])

    def testMergeOrderIgnoresCompletionOrder(self):
        def slow(delay):
            def handler(context):
                pass
            return {"handler": handler, "delay": delay}

        units = {f"commands/c{index}.py": slow(0.05 - index * 0.01) for index in range(5)}
        self.plant(*units)

        def loader(path):
            value = units[Path(path).relative_to(self.root).as_posix()]
            time.sleep(value["delay"])
            return value

        found = discover(self.root, loader, workers=5)
        self.assertEqual([command.name for command in found.commands], ["c0", "c1", "c2", "c3", "c4"])

    def testMissingDirectories(self):
        found = discover(self.root, Units(self.root, {}))
        self.assertEqual((found.commands, found.extensions, found.diagnostics), ((), (), ()))

    def testLoaderMustBeCallable(self):
        with self.assertRaises(TypeError):
            discover(self.root, "load")


class TestExtensionDiscovery(DiscoveryCase):
    """extensions/ is flat."""

    def testExtensions(self):
        found = self.discover({
            "extensions/database.py": {"setup": noop, "dependencies": ("config",), "teardown": noop},
            "extensions/config.py": {"setup": noop, "description": "Settings."},
            "extensions/ready.py": Extension(noop, name="cache"),
        })
        self.assertEqual([object.name for object in found.extensions], ["config", "database", "cache"])
        config, database, _ = found.extensions
        self.assertEqual(config.descr, "Settings.")
        self.assertEqual(database.dependencies, ("config",))
        self.assertIs(database.teardown, noop)

    def testNestedExtensionsAreIgnored(self):
        self.plant("extensions/nested/inner.py")
        found = self.discover({"extensions/config.py": {"setup": noop}})
        self.assertEqual(self.loader.seen, ["extensions/config.py"])
        self.assertEqual(len(found.extensions), 1)

    def testMissingSetupIsReported(self):
        found = self.discover({
            "extensions/config.py": {"setup": noop},
            "extensions/broken.py": {"description": "no setup"},
        })
        self.assertEqual([object.name for object in found.extensions], ["config"])
        self.assertEqual(found.diagnostics[0].code, FaultCode.MALFORMED_UNIT)
        self.assertTrue(found.diagnostics[0].path.endswith("broken.py"))

    def testCommandsAndExtensionsTogether(self):
        found = self.discover({
            "commands/deploy.py": {"handler": noop},
            "extensions/config.py": RuntimeError("boom"),
        })
        self.assertEqual(len(found.commands), 1)
        self.assertEqual(found.extensions, ())
        self.assertEqual(len(found.diagnostics), 1)


class TestLoad(DiscoveryCase):
    """The default file loader."""

    def write(self, relative, source):
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source))
        return path

    def testModuleAttributes(self):
        self.write("commands/hello.py", """
            description = "Say hello."

            def handler(context):
                return "hi"
        """)
        found = discover(self.root)
        hello, = found.commands
        self.assertEqual(hello.name, "hello")
        self.assertEqual(hello.descr, "Say hello.")
        self.assertEqual(hello.handler(None), "hi")

    def testDefaultAttribute(self):
        path = self.write("commands/ship.py", """
            from sprout import Command

            def ship(context):
                pass

            default = Command(ship, aliases=("s",))
        """)
        value = load(path)
        self.assertIsInstance(value, Command)
        self.assertEqual(value.aliases, ("s",))

    def testImportErrorPropagates(self):
        path = self.write("commands/broken.py", "raise RuntimeError('boom')\n")
        before = set(sys.modules)
        with self.assertRaises(RuntimeError):
            load(path)
        self.assertEqual(set(sys.modules) - before, set())

    def testImportErrorBecomesDiagnostic(self):
        self.write("commands/broken.py", "import not_a_real_module_anywhere\n")
        self.write("commands/fine.py", "def handler(context):\n    pass\n")
        found = discover(self.root)
        self.assertEqual([command.name for command in found.commands], ["fine"])
        self.assertIsInstance(found.diagnostics[0].cause, ImportError)


if __name__ == "__main__":
    unittest.main()
