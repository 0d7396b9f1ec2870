"""
Runner behavioral tests (build, dispatch, exit codes).

Scope
- Validate the end-to-end path: prompt -> parser -> handler -> exit status.
- Validate how each failure kind surfaces (usage error, hint, timeout,
  traceback with bug-report pointer).
- Validate the on_before_handler hook and handler flavors (plain, async).

Conventions
- Test method names follow CamelCase per project convention.
- Output written by the runner (rich console and argparse) is captured into a
  single buffer; run() always ends with SystemExit.
"""

from __future__ import annotations

import io
import threading
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import TestCase, mock

from rich.console import Console

from structcli import (
    App,
    Command,
    Option,
    Param,
    ExitCode,
    HintError,
    InvalidError,
    NotFoundError,
    InvalidRootError,
    build,
    run,
)


class RunnerCase(TestCase):
    def invoke(self, root, prompt, /, **options):
        buffer = io.StringIO()
        console = Console(file=buffer, width=200, force_terminal=False)
        with mock.patch("structcli.runner.console", console), redirect_stderr(buffer), redirect_stdout(buffer):
            with self.assertRaises(SystemExit) as context:
                run(root, prompt, **options)
        return context.exception.code, buffer.getvalue()


class TestDispatch(RunnerCase):
    """Behavioral tests for the success path."""

    def testNestedCommandReceivesParsedOptions(self):
        seen = []
        tool = App("tool")
        db = tool.category("db")

        @db.command(options={"dry-run": Option(type=bool)})
        def migrate(args):
            seen.append(args.dry_run)

        code, _ = self.invoke(tool, "db migrate --dry-run")
        self.assertEqual(code, ExitCode.SUCCESS)
        self.assertEqual(seen, [True])

    def testHandlerSeesMatchedNode(self):
        seen = []
        tool = App("tool")
        status = tool.command("status", lambda args: seen.append(args.__node__))
        code, _ = self.invoke(tool, ["status"])
        self.assertEqual(code, 0)
        self.assertEqual(seen, [status])

    def testParamsReachHandler(self):
        seen = []
        tool = App("tool")
        tool.command(
            "copy",
            lambda args: seen.append((args.source, args.target)),
            params={"source": Param(required=True), "target": Param()},
        )
        code, _ = self.invoke(tool, "copy a.txt")
        self.assertEqual(code, 0)
        self.assertEqual(seen, [("a.txt", None)])

    def testAsyncHandlerIsAwaited(self):
        seen = []
        tool = App("tool")

        @tool.command
        async def fetch(args):
            seen.append("fetched")

        code, _ = self.invoke(tool, "fetch")
        self.assertEqual(code, 0)
        self.assertEqual(seen, ["fetched"])

    def testCommandAsRoot(self):
        seen = []
        code, _ = self.invoke(Command("hello", lambda args: seen.append(args.name), params={"name": Param()}), "world")
        self.assertEqual(code, 0)
        self.assertEqual(seen, ["world"])

    def testPromptDefaultsToArgv(self):
        seen = []
        tool = App("tool")
        tool.command("status", lambda args: seen.append(True))
        with mock.patch("sys.argv", ["tool", "status"]):
            code, _ = self.invoke(tool, "")
        self.assertEqual(seen, [])
        self.assertEqual(code, ExitCode.INVALID)

        buffer = io.StringIO()
        with mock.patch("sys.argv", ["tool", "status"]), redirect_stderr(buffer):
            with self.assertRaises(SystemExit) as context:
                run(tool)
        self.assertEqual(context.exception.code, 0)
        self.assertEqual(seen, [True])

    def testVersionSwitch(self):
        tool = App("tool", version="1.2.3")
        tool.command("status", lambda args: None)
        code, output = self.invoke(tool, "--version")
        self.assertEqual(code, 0)
        self.assertIn("tool 1.2.3", output)

    def testInvalidPromptRejected(self):
        tool = App("tool")
        with self.assertRaises(TypeError):
            run(tool, ["status", 1])

    def testInvalidRootRejected(self):
        with self.assertRaises(InvalidRootError):
            run("tool", "")
        with self.assertRaises(InvalidRootError):
            build(object())

    def testBuildReturnsConfiguredParser(self):
        tool = App("tool", descr="maintenance tool")
        tool.command("status", lambda args: None)
        parser = build(tool)
        self.assertEqual(parser.prog, "tool")
        self.assertEqual(parser.description, "maintenance tool")
        self.assertEqual(parser.parse_args(["status"]).tool_command, "status")


class TestFailures(RunnerCase):
    """Behavioral tests for exit status mapping."""

    def testUnknownInputIsUsageError(self):
        tool = App("tool")
        tool.command("status", lambda args: None)
        code, output = self.invoke(tool, "status --bogus")
        self.assertEqual(code, 2)
        self.assertIn("--bogus", output)

    def testMissingSubcommandIsUsageError(self):
        tool = App("tool")
        tool.category("db").command("migrate", lambda args: None)
        code, _ = self.invoke(tool, "db")
        self.assertEqual(code, 2)

    def testEmptyAppIsUsageError(self):
        code, output = self.invoke(App("tool"), "")
        self.assertEqual(code, 2)
        self.assertIn("a command is required", output)

    def testInvalidErrorUsesLeafParser(self):
        def migrate(args):
            raise InvalidError("bad flag")

        tool = App("tool")
        tool.category("db").command("migrate", migrate)
        code, output = self.invoke(tool, "db migrate")
        self.assertEqual(code, ExitCode.INVALID)
        self.assertIn("tool db migrate: error: bad flag", output)
        self.assertNotIn("Traceback", output)

    def testHintErrorPrintsMessage(self):
        def migrate(args):
            raise HintError("did you mean --dry-run?")

        tool = App("tool")
        tool.command("migrate", migrate)
        code, output = self.invoke(tool, "migrate")
        self.assertEqual(code, ExitCode.HINT)
        self.assertIn("did you mean --dry-run?", output)
        self.assertNotIn("Traceback", output)

    def testTimeout(self):
        release = threading.Event()
        self.addCleanup(release.set)

        tool = App("tool")
        tool.command("slow", lambda args: release.wait())
        code, output = self.invoke(tool, "slow", timeout=0.1)
        self.assertEqual(code, ExitCode.TIMEOUT)
        self.assertIn("0.1 seconds", output)

    def testAppTimeoutUsedByDefault(self):
        release = threading.Event()
        self.addCleanup(release.set)

        tool = App("tool", timeout=0.1)
        tool.command("slow", lambda args: release.wait())
        code, _ = self.invoke(tool, "slow")
        self.assertEqual(code, ExitCode.TIMEOUT)

    def testTimeoutValidation(self):
        tool = App("tool")
        with self.assertRaises(ValueError):
            run(tool, "", timeout=0)
        with self.assertRaises(TypeError):
            run(tool, "", timeout=True)

    def testUnexpectedErrorPointsToBugtracker(self):
        def migrate(args):
            raise RuntimeError("disk on fire")

        tool = App("tool", bugtracker="https://example.invalid/issues")
        tool.command("migrate", migrate)
        code, output = self.invoke(tool, "migrate")
        self.assertEqual(code, ExitCode.UNEXPECTED)
        self.assertIn("Traceback", output)
        self.assertIn("disk on fire", output)
        self.assertIn("https://example.invalid/issues", output)

    def testUnexpectedErrorWithoutBugtracker(self):
        def migrate(args):
            raise RuntimeError("disk on fire")

        tool = App("tool")
        tool.command("migrate", migrate)
        code, output = self.invoke(tool, "migrate")
        self.assertEqual(code, ExitCode.UNEXPECTED)
        self.assertIn("report it to its maintainers", output)

    def testOtherCommandErrorsAreUnexpected(self):
        def fetch(args):
            raise NotFoundError("no such record")

        tool = App("tool")
        tool.command("fetch", fetch)
        code, output = self.invoke(tool, "fetch")
        self.assertEqual(code, ExitCode.UNEXPECTED)
        self.assertIn("E_NOTFOUND", output)
        self.assertIn("no such record", output)

    def testCompilationFailurePropagates(self):
        class Failing:
            def on_before_configure(self, payload):
                raise RuntimeError("broken plugin")

        tool = App("tool", plugins=[Failing()])
        tool.command("status", lambda args: None)
        with self.assertRaises(RuntimeError):
            run(tool, "status")


class TestHandlerHooks(RunnerCase):
    """Behavioral tests for on_before_handler."""

    def testPayload(self):
        seen = {}

        class Inspecting:
            def on_before_handler(self, payload):
                seen.update(payload)

        def migrate(args):
            pass

        tool = App("tool")
        node = tool.command("migrate", migrate, options={"dry-run": Option(type=bool)}, plugins=[Inspecting()])
        code, _ = self.invoke(tool, "migrate --dry-run")
        self.assertEqual(code, 0)
        self.assertEqual(set(seen), {"args", "node", "parser", "handler"})
        self.assertIs(seen["node"], node)
        self.assertIs(seen["handler"], migrate)
        self.assertIs(seen["parser"], seen["args"].__parser__)
        self.assertTrue(seen["args"].dry_run)

    def testFailureSkipsHandler(self):
        calls = []

        class Gate:
            def on_before_handler(self, payload):
                raise HintError("log in first")

        tool = App("tool")
        tool.command("deploy", lambda args: calls.append(True), plugins=[Gate()])
        code, output = self.invoke(tool, "deploy")
        self.assertEqual(code, ExitCode.HINT)
        self.assertIn("log in first", output)
        self.assertEqual(calls, [])

    def testOrderedBeforeHandler(self):
        journal = []

        class First:
            def on_before_handler(self, payload):
                journal.append("first")

        class Second:
            async def on_before_handler(self, payload):
                journal.append("second")

        tool = App("tool")
        tool.command("deploy", lambda args: journal.append("handler"), plugins=[First(), Second()])
        code, _ = self.invoke(tool, "deploy")
        self.assertEqual(code, 0)
        self.assertEqual(journal, ["first", "second", "handler"])


if __name__ == "__main__":
    unittest.main()
