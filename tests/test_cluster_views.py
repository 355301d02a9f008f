from __future__ import annotations

import io
import json
import sys
import unittest
from datetime import timedelta
from pathlib import Path

TESTS_ROOT = Path(__file__).resolve().parent
if str(TESTS_ROOT) not in sys.path:
    sys.path.insert(0, str(TESTS_ROOT))

import yaml

from fakes import FakeClient, pod, tool_resource

from rapt.contracts import ToolDefinition
from rapt.crd import crd_state, install_crd, load_tool_crd, purge_crd
from rapt.errors import PodReadinessTimeout, ResourceNotFound
from rapt.jobs import copy_job_logs, format_duration, list_job_runs, wait_for_started_pod
from rapt.render import render_job_runs, render_status, render_table, render_tools
from rapt.status import collect_status


def _job(name: str, created: str, **status) -> dict:
    return {
        "kind": "Job",
        "metadata": {"name": name, "creationTimestamp": created},
        "status": status,
    }


class CrdTests(unittest.TestCase):
    def test_bundled_crd_describes_tools(self) -> None:
        crd = load_tool_crd()
        self.assertEqual("tools.rapt.dev", crd["metadata"]["name"])
        self.assertEqual("rapt.dev", crd["spec"]["group"])
        self.assertEqual("Tool", crd["spec"]["names"]["kind"])
        self.assertEqual("v1alpha1", crd["spec"]["versions"][0]["name"])

    def test_install_is_idempotent(self) -> None:
        client = FakeClient()
        self.assertTrue(install_crd(client))
        self.assertFalse(install_crd(client))

    def test_purge_of_missing_crd_reports_false(self) -> None:
        client = FakeClient()

        def _delete(kind, name, **_kwargs):
            raise ResourceNotFound(f'{kind} "{name}" not found')

        client.delete_resource = _delete  # type: ignore[method-assign]
        self.assertFalse(purge_crd(client))

    def test_crd_state(self) -> None:
        client = FakeClient()
        self.assertFalse(crd_state(client).installed)
        client.resources[("customresourcedefinition", "tools.rapt.dev")] = {
            "metadata": {"name": "tools.rapt.dev", "creationTimestamp": "2024-05-01T09:00:00Z"}
        }
        state = crd_state(client)
        self.assertTrue(state.installed)
        self.assertEqual(2024, state.created.year)


class JobRunTests(unittest.TestCase):
    def test_runs_are_listed_newest_first_with_durations(self) -> None:
        client = FakeClient()
        client.resources[("jobs", "echo-1")] = _job(
            "echo-1",
            "2024-05-01T10:00:00Z",
            succeeded=1,
            completionTime="2024-05-01T10:01:05Z",
        )
        client.resources[("jobs", "echo-2")] = _job("echo-2", "2024-05-01T11:00:00Z", active=1)

        runs = list_job_runs(client, "echo", namespace="default")

        self.assertEqual(["echo-2", "echo-1"], [run.name for run in runs])
        self.assertEqual("Running", runs[0].status)
        self.assertEqual("", runs[0].duration)
        self.assertEqual("1m 5s", runs[1].duration)

    def test_format_duration(self) -> None:
        self.assertEqual("42s", format_duration(timedelta(seconds=42)))
        self.assertEqual("2m 3s", format_duration(timedelta(minutes=2, seconds=3)))
        self.assertEqual("1h 30m", format_duration(timedelta(hours=1, minutes=30, seconds=9)))

    def test_pending_pod_times_out(self) -> None:
        client = FakeClient()
        client.pod_responses = [[pod("echo-1-x", "Pending")]]
        with self.assertRaises(PodReadinessTimeout):
            wait_for_started_pod(client, "echo-1", namespace="default", max_attempts=2, poll_interval=0)

    def test_started_pod_is_returned(self) -> None:
        client = FakeClient()
        client.pod_responses = [[pod("echo-1-x", "Pending")], [pod("echo-1-x", "Succeeded")]]
        name = wait_for_started_pod(client, "echo-1", namespace="default", poll_interval=0)
        self.assertEqual("echo-1-x", name)

    def test_copy_job_logs(self) -> None:
        client = FakeClient()
        client.log_chunks = [b"a\n", b"b\n"]
        sink = io.BytesIO()
        self.assertEqual(4, copy_job_logs(client, "echo-1-x", sink, namespace="default"))
        self.assertEqual(b"a\nb\n", sink.getvalue())


class StatusAndRenderTests(unittest.TestCase):
    def test_status_counts_tools_per_namespace(self) -> None:
        client = FakeClient()
        client.resources[("customresourcedefinition", "tools.rapt.dev")] = {
            "metadata": {"name": "tools.rapt.dev"}
        }
        client.tools["a"] = tool_resource("a", namespace="dev")
        client.tools["b"] = tool_resource("b", namespace="dev")
        client.tools["c"] = tool_resource("c", namespace="prod")

        report = collect_status(client, namespace="default", all_namespaces=True)

        self.assertTrue(report.ready)
        self.assertEqual(3, report.tools_count)
        self.assertEqual({"dev": 2, "prod": 1}, report.tools_by_namespace)
        self.assertIn("Rapt is properly installed", render_status(report))

    def test_status_without_crd_is_not_ready(self) -> None:
        report = collect_status(FakeClient(), namespace="default")
        self.assertTrue(report.cluster_connected)
        self.assertFalse(report.ready)
        self.assertTrue(report.errors)

    def test_render_table_aligns_columns(self) -> None:
        text = render_table(["NAME", "IMAGE"], [["a", "busybox"], ["longer", "x"]])
        lines = text.splitlines()
        self.assertEqual("NAME    IMAGE", lines[0])
        self.assertEqual("longer  x", lines[2])

    def test_render_tools_in_every_format(self) -> None:
        tools = [ToolDefinition.from_resource(tool_resource("echo", command=["echo", "-n"]))]
        self.assertIn("echo...", render_tools(tools))
        self.assertEqual("echo", json.loads(render_tools(tools, output="json"))[0]["name"])
        self.assertEqual("busybox", yaml.safe_load(render_tools(tools, output="yaml"))[0]["image"])

    def test_render_job_runs_without_runs(self) -> None:
        self.assertEqual("No previous runs found for tool 'echo'\n", render_job_runs("echo", []))


if __name__ == "__main__":
    unittest.main()
