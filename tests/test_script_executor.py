import json
import unittest
from unittest import mock

from _test_support import SCRIPTS_DIR, make_task, write_script
from autorelay.executors import ScriptExecutor
from autorelay.executors.script import NO_OUTPUT, build_command, parse_stdout_response
from autorelay.result_channel import MemoryResultStore, ResultChannel, result_key
from autorelay.schemas import ScriptResponse


class _StaticResolver:
    def __init__(self, env):
        self.env = env
        self.calls = []

    def resolve(self, credential_id, owner_id):
        self.calls.append((credential_id, owner_id))
        return dict(self.env)


class StdoutParsingTests(unittest.TestCase):
    def test_last_json_line_wins(self):
        lines = ["starting", '{"content": "first"}', "working", '{"type": "markdown", "content": "last"}']
        response = parse_stdout_response(lines, "\n".join(lines))
        self.assertEqual(response.content, "last")
        self.assertEqual(response.type, "markdown")

    def test_whole_blob_is_tried_when_no_line_parses(self):
        stdout = '[\n  1,\n  2\n]'
        response = parse_stdout_response(stdout.splitlines(), stdout)
        self.assertEqual(response.json_content, [1, 2])

    def test_plain_text_has_no_structured_response(self):
        self.assertIsNone(parse_stdout_response(["hello"], "hello"))
        self.assertIsNone(parse_stdout_response(["42"], "42"))

    def test_deeply_nested_json_degrades_to_raw(self):
        nested = "[" * 100000 + "]" * 100000
        self.assertIsNone(parse_stdout_response([nested], nested))

    def test_interpreter_is_chosen_by_extension(self):
        command = build_command(SCRIPTS_DIR / "job.js", ["--x"])
        self.assertEqual(command[0], "node")
        self.assertEqual(command[-1], "--x")
        self.assertEqual(build_command(SCRIPTS_DIR / "job", []), [str(SCRIPTS_DIR / "job")])


class ScriptExecutorTests(unittest.TestCase):
    def setUp(self):
        self.store = MemoryResultStore()
        self.channel = ResultChannel(self.store, attempts=2, delay_seconds=0, sleep=lambda _: None)

    def _executor(self, resolver=None, execution_id="exec-1", **kwargs):
        return ScriptExecutor(
            self.channel,
            resolver,
            scripts_dir=SCRIPTS_DIR,
            show_logs=False,
            id_factory=lambda: execution_id,
            **kwargs,
        )

    def test_missing_script_fails_without_spawning(self):
        with mock.patch("autorelay.executors.script.subprocess.Popen") as popen:
            result = self._executor().execute(make_task("script", "does-not-exist.py"))
        self.assertFalse(result.success)
        self.assertIn("Script not found", result.error)
        popen.assert_not_called()

    def test_channel_result_takes_precedence_over_stdout(self):
        write_script("channel_wins.py", 'print(\'{"type": "text", "content": "from stdout"}\')\n')
        key = result_key("exec-channel")
        self.channel.publish(key, ScriptResponse(type="markdown", content="from channel"))

        result = self._executor(execution_id="exec-channel").execute(make_task("script", "channel_wins.py"))

        self.assertTrue(result.success)
        self.assertEqual(result.raw_output, "from channel")
        self.assertEqual(result.structured.type, "markdown")
        self.assertIsNone(self.store.get(key))

    def test_stdout_json_line_is_the_fallback(self):
        write_script(
            "stdout_json.py",
            "print('checking issues')\n"
            "print('{\"success\": false, \"type\": \"text\", \"content\": \"2 stale\", \"error\": \"stale issues\"}')\n",
        )
        result = self._executor().execute(make_task("script", "stdout_json.py"))
        self.assertFalse(result.success)
        self.assertEqual(result.raw_output, "2 stale")
        self.assertEqual(result.error, "stale issues")

    def test_plain_output_is_raw_success(self):
        write_script("plain.py", "print('hello there')\n")
        result = self._executor().execute(make_task("script", "plain.py"))
        self.assertTrue(result.success)
        self.assertEqual(result.raw_output, "hello there")
        self.assertIsNone(result.structured)

    def test_silent_script_reports_placeholder(self):
        write_script("silent.py", "pass\n")
        result = self._executor().execute(make_task("script", "silent.py"))
        self.assertTrue(result.success)
        self.assertEqual(result.raw_output, NO_OUTPUT)

    def test_nonzero_exit_without_stderr_fails(self):
        write_script("exit_three.py", "import sys\nsys.exit(3)\n")
        result = self._executor().execute(make_task("script", "exit_three.py"))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Script exited with code 3")

    def test_nonzero_exit_with_stderr_keeps_output(self):
        write_script(
            "warn_exit.py",
            "import sys\nprint('partial')\nsys.stderr.write('something odd\\n')\nsys.exit(1)\n",
        )
        result = self._executor().execute(make_task("script", "warn_exit.py"))
        self.assertTrue(result.success)
        self.assertEqual(result.raw_output, "partial")
        self.assertEqual(result.error, "something odd")

    def test_timeout_kills_the_script(self):
        write_script("sleepy.py", "import time\ntime.sleep(30)\n")
        config = json.dumps({"path": "sleepy.py", "timeout_seconds": 0.5})
        result = self._executor().execute(make_task("script", config))
        self.assertFalse(result.success)
        self.assertIn("timed out", result.error)

    def test_environment_carries_credentials_and_result_key(self):
        write_script(
            "env_dump.py",
            "import json, os\n"
            "keys = ['JIRA_URL', 'AUTOMATION_EXECUTION_ID', 'AUTOMATION_REDIS_KEY']\n"
            "print(json.dumps({k: os.environ.get(k) for k in keys}))\n",
        )
        resolver = _StaticResolver({"JIRA_URL": "https://acme.atlassian.net"})
        config = json.dumps({"path": "env_dump.py", "credential_id": 5})
        result = self._executor(resolver, execution_id="exec-env").execute(make_task("script", config))

        self.assertTrue(result.success)
        env = result.structured.json_content
        self.assertEqual(env["JIRA_URL"], "https://acme.atlassian.net")
        self.assertEqual(env["AUTOMATION_EXECUTION_ID"], "exec-env")
        self.assertEqual(env["AUTOMATION_REDIS_KEY"], "automation:result:exec-env")
        self.assertEqual(resolver.calls, [(5, 1)])

    def test_start_failure_is_reported(self):
        write_script("unstartable.py", "print('never')\n")
        with mock.patch(
            "autorelay.executors.script.subprocess.Popen",
            side_effect=OSError("exec format error"),
        ):
            result = self._executor().execute(make_task("script", "unstartable.py"))
        self.assertFalse(result.success)
        self.assertIn("Failed to start script", result.error)


if __name__ == "__main__":
    unittest.main()
