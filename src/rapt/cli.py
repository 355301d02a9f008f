from __future__ import annotations

import argparse
import logging
import platform
import sys
from typing import Callable, Sequence, TextIO

import yaml

from . import __version__
from .binder import parse_key_values
from .config import RaptConfig, load_config
from .contracts import RunRequest
from .crd import install_crd, purge_crd
from .engine import ToolRunner
from .errors import ERROR_TIMEOUT, RaptError, ResourceExists
from .jobs import copy_job_logs, get_job_run, list_job_runs, wait_for_started_pod
from .kubectl import KubectlClient
from .mounts import parse_mount
from .render import (
    OUTPUT_FORMATS,
    OUTPUT_TABLE,
    render_job_runs,
    render_status,
    render_tool,
    render_tools,
)
from .status import collect_status
from .tools import build_tool, create_tool, delete_tools, fetch_tool, list_tool_definitions

LOGGER_NAME = "rapt"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMEOUT = 124
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def setup_logging(level: str, *, stream: TextIO | None = None) -> None:
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.handlers = [handler]
    root.propagate = False


def confirm(message: str, *, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"{message} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _non_negative_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value}") from exc
    if seconds < 0:
        raise argparse.ArgumentTypeError(f"timeout must be 0 or greater, got {value}")
    return seconds


def _exit_code_for_error(exc: BaseException) -> int:
    if isinstance(exc, TimeoutError):
        return EXIT_TIMEOUT
    if isinstance(exc, RaptError) and exc.code == ERROR_TIMEOUT:
        return EXIT_TIMEOUT
    return EXIT_ERROR


def _cmd_run(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    request = RunRequest(
        tool_name=args.tool,
        arguments=parse_key_values(args.arg, kind="argument"),
        env=parse_key_values(args.env, kind="environment variable"),
        mounts=tuple(parse_mount(item) for item in args.mount),
        wait=bool(args.wait),
        follow=bool(args.follow),
        timeout=args.timeout,
    )
    ToolRunner(client, config).run(request)
    return EXIT_OK


def _cmd_add(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    tool = build_tool(
        name=args.name,
        namespace=config.namespace,
        image=args.image,
        command=args.command or "",
        env=args.env,
        arguments=args.arg_spec,
        help_text=args.help_text or "",
    )
    if args.dry_run:
        _write(yaml.safe_dump(tool.to_resource(), sort_keys=False))
        return EXIT_OK
    try:
        create_tool(client, tool)
    except ResourceExists as exc:
        raise RaptError(
            f"tool '{tool.name}' already exists in namespace '{tool.namespace}'",
            code=exc.code,
        ) from exc
    _write(f"Tool '{tool.name}' created successfully in namespace '{tool.namespace}'\n")
    return EXIT_OK


def _cmd_list(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    tools = list_tool_definitions(
        client,
        namespace=config.namespace,
        all_namespaces=args.all_namespaces,
    )
    if not tools and args.output == OUTPUT_TABLE:
        scope = "any namespace" if args.all_namespaces else f"namespace '{config.namespace}'"
        _write(f"No tools found in {scope}.\n")
        return EXIT_OK
    _write(render_tools(tools, output=args.output, all_namespaces=args.all_namespaces))
    return EXIT_OK


def _cmd_describe(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    tool = fetch_tool(client, args.tool, namespace=config.namespace)
    _write(render_tool(tool, output=args.output))
    return EXIT_OK


def _cmd_delete(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    namespace = config.namespace
    if args.all:
        if args.tools:
            raise RaptError("cannot combine tool names with --all")
        names = [tool.name for tool in list_tool_definitions(client, namespace=namespace)]
        if not names:
            _write(f"No tools found in namespace '{namespace}'.\n")
            return EXIT_OK
        prompt = (
            f"Are you sure you want to delete ALL {len(names)} tool(s) in namespace "
            f"'{namespace}'?\nTools: {', '.join(names)}"
        )
    else:
        if not args.tools:
            raise RaptError("specify at least one tool name or --all")
        names = list(args.tools)
        prompt = f"Are you sure you want to delete tool(s): {', '.join(names)}?"

    if not confirm(prompt, assume_yes=args.force or args.yes):
        _write("Deletion cancelled.\n")
        return EXIT_OK

    report = delete_tools(client, names, namespace=namespace)
    for name in names:
        if name in report.failed:
            _write(f"Failed to delete tool '{name}': {report.failed[name]}\n")
        else:
            _write(f"Successfully deleted tool '{name}'\n")
    if report.deleted:
        _write(f"\nDeleted {len(report.deleted)} tool(s): {', '.join(report.deleted)}\n")
    report.raise_for_failures()
    return EXIT_OK


def _cmd_init(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    if install_crd(client):
        _write("Tool CRD installed successfully\n")
    else:
        _write("Tool CRD already exists\n")
    return EXIT_OK


def _cmd_purge(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    prompt = "This removes the Tool CRD and every tool in every namespace. Continue?"
    if not confirm(prompt, assume_yes=args.yes):
        _write("Purge cancelled.\n")
        return EXIT_OK
    if purge_crd(client):
        _write("Tool CRD removed successfully\n")
    else:
        _write("Tool CRD not found, nothing to remove\n")
    return EXIT_OK


def _cmd_logs(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    namespace = config.namespace
    if not args.job:
        runs = list_job_runs(client, args.tool, namespace=namespace)
        _write(render_job_runs(args.tool, runs))
        return EXIT_OK

    run = get_job_run(client, args.job, namespace=namespace)
    pod_name = wait_for_started_pod(client, args.job, namespace=namespace)
    created = run.created.strftime("%Y-%m-%d %H:%M:%S") if run.created else ""
    _write(
        f"Job: {run.name}\nPod: {pod_name}\nStatus: {run.status}\nCreated: {created}\n"
    )
    if args.follow:
        _write("Following logs in real-time (Press Ctrl+C to stop)...\n")
    _write("=" * 50 + "\n")
    copy_job_logs(
        client,
        pod_name,
        sys.stdout.buffer,
        namespace=namespace,
        follow=args.follow,
        tail=args.tail or None,
    )
    return EXIT_OK


def _cmd_status(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    report = collect_status(
        client,
        namespace=config.namespace,
        all_namespaces=args.all_namespaces,
    )
    _write(render_status(report, output=args.output))
    return EXIT_OK if report.ready else EXIT_ERROR


def _cmd_version(args: argparse.Namespace, config: RaptConfig, client: KubectlClient) -> int:
    _write(
        f"rapt version {__version__}\n"
        f"Python: {platform.python_version()}\n"
        f"Platform: {platform.system().lower()}/{platform.machine()}\n"
    )
    return EXIT_OK


Handler = Callable[[argparse.Namespace, RaptConfig, KubectlClient], int]


def _global_options() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "-n",
        "--namespace",
        default=argparse.SUPPRESS,
        help="Kubernetes namespace (default: RAPT_NAMESPACE or 'default').",
    )
    parent.add_argument(
        "--kubeconfig",
        default=argparse.SUPPRESS,
        help="Path to the kubeconfig file used by kubectl.",
    )
    parent.add_argument(
        "--context",
        default=argparse.SUPPRESS,
        help="kubeconfig context to use.",
    )
    parent.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=argparse.SUPPRESS,
        help="Increase log verbosity (-v info, -vv debug).",
    )
    parent.add_argument(
        "-y",
        "--yes",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Answer yes to confirmation prompts.",
    )
    return parent


def _add_output_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-o",
        "--output",
        choices=OUTPUT_FORMATS,
        default=OUTPUT_TABLE,
        help="Output format: table, json, yaml.",
    )


def build_parser() -> argparse.ArgumentParser:
    common = _global_options()
    parser = argparse.ArgumentParser(
        prog="rapt",
        description="Register containerized tools in Kubernetes and run them as Jobs.",
        parents=[common],
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    def add_command(name: str, handler: Handler, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, parents=[common], help=help_text, description=help_text)
        sub.set_defaults(handler=handler)
        return sub

    run = add_command("run", _cmd_run, "Run a tool as a Kubernetes Job.")
    run.add_argument("tool", help="Tool name.")
    run.add_argument(
        "-a",
        "--arg",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Tool argument. Can be specified multiple times.",
    )
    run.add_argument(
        "-e",
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable override. Can be specified multiple times.",
    )
    run.add_argument(
        "-m",
        "--mount",
        action="append",
        default=[],
        metavar="LOCAL:CONTAINER",
        help="Mount a local file into the container. Can be specified multiple times.",
    )
    run.add_argument(
        "-w",
        "--wait",
        action="store_true",
        help="Wait for the job to complete before exiting.",
    )
    run.add_argument(
        "-f",
        "--follow",
        action="store_true",
        help="Follow job logs in real-time (implies --wait).",
    )
    run.add_argument(
        "-t",
        "--timeout",
        type=_non_negative_seconds,
        default=None,
        help="Seconds to wait for completion (0 = no timeout, default: RAPT_WATCH_TIMEOUT_SECONDS).",
    )

    add = add_command("add", _cmd_add, "Register a tool.")
    add.add_argument("name", help="Tool name.")
    add.add_argument("-i", "--image", required=True, help="Container image to run.")
    add.add_argument(
        "-c",
        "--command",
        default="",
        help="Command to run (overrides ENTRYPOINT), as a single shell-quoted string.",
    )
    add.add_argument(
        "-e",
        "--env",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Environment variable. Can be specified multiple times.",
    )
    add.add_argument(
        "--arg-spec",
        action="append",
        default=[],
        metavar="NAME[:required][=DEFAULT][#DESCRIPTION]",
        help="Declare a tool argument. Can be specified multiple times.",
    )
    add.add_argument("--help-text", default="", help="Help text shown by describe.")
    add.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the Tool resource as YAML instead of creating it.",
    )

    list_cmd = add_command("list", _cmd_list, "List registered tools.")
    _add_output_option(list_cmd)
    list_cmd.add_argument(
        "-A",
        "--all-namespaces",
        action="store_true",
        help="List tools from all namespaces.",
    )

    describe = add_command("describe", _cmd_describe, "Show a tool definition.")
    describe.add_argument("tool", help="Tool name.")
    _add_output_option(describe)

    delete = add_command("delete", _cmd_delete, "Delete one or more tools.")
    delete.add_argument("tools", nargs="*", help="Tool names.")
    delete.add_argument(
        "-a",
        "--all",
        action="store_true",
        help="Delete all tools in the namespace.",
    )
    delete.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Skip the confirmation prompt.",
    )

    add_command("init", _cmd_init, "Install the Tool custom resource definition.")
    add_command("purge", _cmd_purge, "Remove the Tool custom resource definition.")

    logs = add_command("logs", _cmd_logs, "List runs of a tool or show one job's logs.")
    logs.add_argument("tool", help="Tool name.")
    logs.add_argument("job", nargs="?", default="", help="Job name.")
    logs.add_argument(
        "-f",
        "--follow",
        action="store_true",
        help="Follow logs in real-time (only for a specific job).",
    )
    logs.add_argument(
        "-t",
        "--tail",
        type=int,
        default=0,
        help="Number of lines to show from the end of the logs (0 = all).",
    )

    status = add_command("status", _cmd_status, "Show cluster and installation status.")
    _add_output_option(status)
    status.add_argument(
        "-A",
        "--all-namespaces",
        action="store_true",
        help="Count tools in all namespaces.",
    )

    add_command("version", _cmd_version, "Print version information.")
    return parser


def _config_from_args(args: argparse.Namespace) -> RaptConfig:
    config = load_config()
    verbose = int(getattr(args, "verbose", 0) or 0)
    log_level = None
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    return config.with_overrides(
        namespace=getattr(args, "namespace", None),
        kubeconfig=getattr(args, "kubeconfig", None),
        context=getattr(args, "context", None),
        log_level=log_level,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "yes"):
        args.yes = False

    try:
        config = _config_from_args(args)
    except RaptError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    setup_logging(config.log_level)

    handler: Handler = args.handler
    client = KubectlClient(config)
    try:
        return int(handler(args, config, client))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except RaptError as exc:
        logger.debug("Command %s failed: %s", args.command, exc.details)
        print(f"Error: {exc}", file=sys.stderr)
        return _exit_code_for_error(exc)
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected failure in command %s", args.command)
        print(f"Error: unexpected failure: {exc}", file=sys.stderr)
        return EXIT_ERROR
