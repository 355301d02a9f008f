from __future__ import annotations

import codecs
import json
import logging
import subprocess
import tempfile
from typing import IO, Any, Iterator

from .config import RaptConfig
from .contracts import JOB_NAME_POD_LABEL, TOOL_RESOURCE
from .errors import KubectlError, ResourceExists, ResourceNotFound

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 4096
_TERMINATE_WAIT_SECONDS = 5


def _stderr_message(completed: subprocess.CompletedProcess[str]) -> str:
    return (completed.stderr or completed.stdout or "").strip()


def _classify_failure(message: str) -> type[KubectlError]:
    if "(NotFound)" in message:
        return ResourceNotFound
    if "(AlreadyExists)" in message:
        return ResourceExists
    return KubectlError


class KubectlStream:
    def __init__(
        self,
        command: list[str],
        process: subprocess.Popen[bytes],
        stderr: IO[bytes] | None = None,
    ) -> None:
        self.command = command
        self._process = process
        self._stderr = stderr if stderr is not None else process.stderr
        self._closed = False

    def __enter__(self) -> KubectlStream:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def iter_chunks(self) -> Iterator[bytes]:
        stdout = self._process.stdout
        if stdout is None:
            return
        while True:
            try:
                chunk = stdout.read1(_READ_CHUNK_BYTES)
            except (OSError, ValueError):
                if self._closed:
                    return
                raise
            if not chunk:
                break
            yield chunk
        returncode = self._process.wait()
        if returncode != 0 and not self._closed:
            stderr = self._read_stderr()
            raise _classify_failure(stderr)(
                f"kubectl stream exited with code {returncode}: {stderr}",
                command=self.command,
                stderr=stderr,
                returncode=returncode,
            )

    def _read_stderr(self) -> str:
        handle = self._stderr
        if handle is None:
            return ""
        handle.seek(0)
        return handle.read().decode("utf-8", errors="replace").strip()

    def events(self) -> Iterator[dict[str, Any]]:
        decoder = json.JSONDecoder()
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        for chunk in self.iter_chunks():
            buffer += text_decoder.decode(chunk)
            while True:
                buffer = buffer.lstrip()
                if not buffer:
                    break
                try:
                    document, offset = decoder.raw_decode(buffer)
                except json.JSONDecodeError:
                    break
                buffer = buffer[offset:]
                if isinstance(document, dict):
                    yield document
        if buffer.strip():
            logger.debug("Discarding trailing partial watch document: %r", buffer[:200])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        process = self._process
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=_TERMINATE_WAIT_SECONDS)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        for handle in (process.stdout, self._stderr):
            if handle is not None:
                try:
                    handle.close()
                except OSError:
                    pass


class KubectlClient:
    def __init__(self, config: RaptConfig | None = None) -> None:
        self.config = config or RaptConfig()

    @property
    def namespace(self) -> str:
        return self.config.namespace

    def _base_args(
        self,
        *,
        namespace: str | None = None,
        all_namespaces: bool = False,
    ) -> list[str]:
        args = [self.config.kubectl]
        if self.config.kubeconfig:
            args.extend(["--kubeconfig", self.config.kubeconfig])
        if self.config.context:
            args.extend(["--context", self.config.context])
        if all_namespaces:
            args.append("--all-namespaces")
        else:
            args.extend(["--namespace", namespace or self.namespace])
        return args

    def _run(
        self,
        command: list[str],
        *,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                input=input_text,
                timeout=max(1, int(self.config.request_timeout)),
                check=False,
            )
        except FileNotFoundError as exc:
            raise KubectlError(
                f"{self.config.kubectl} command is not installed or not available on PATH.",
                command=command,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise KubectlError(
                f"kubectl timed out after {self.config.request_timeout} seconds.",
                command=command,
            ) from exc
        if completed.returncode != 0:
            message = _stderr_message(completed)
            raise _classify_failure(message)(
                message or f"kubectl exited with code {completed.returncode}",
                command=command,
                stderr=message,
                returncode=completed.returncode,
            )
        return completed

    def _run_json(
        self,
        command: list[str],
        *,
        input_text: str | None = None,
    ) -> dict[str, Any]:
        completed = self._run([*command, "-o", "json"], input_text=input_text)
        text = str(completed.stdout or "").strip()
        if not text:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise KubectlError(
                f"Kubernetes API returned invalid JSON: {exc}",
                command=command,
            ) from exc
        if not isinstance(payload, dict):
            return {}
        return payload

    def _open_stream(self, command: list[str]) -> KubectlStream:
        logger.debug("Streaming %s", " ".join(command))
        stderr = tempfile.TemporaryFile()
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr,
            )
        except FileNotFoundError as exc:
            stderr.close()
            raise KubectlError(
                f"{self.config.kubectl} command is not installed or not available on PATH.",
                command=command,
            ) from exc
        return KubectlStream(command, process, stderr)

    def get_resource(self, kind: str, name: str, *, namespace: str | None = None) -> dict[str, Any]:
        return self._run_json([*self._base_args(namespace=namespace), "get", kind, name])

    def list_resources(
        self,
        kind: str,
        *,
        namespace: str | None = None,
        selector: str | None = None,
        all_namespaces: bool = False,
    ) -> list[dict[str, Any]]:
        command = [
            *self._base_args(namespace=namespace, all_namespaces=all_namespaces),
            "get",
            kind,
        ]
        if selector:
            command.extend(["-l", selector])
        payload = self._run_json(command)
        items = payload.get("items")
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def create_resource(self, manifest: dict[str, Any], *, namespace: str | None = None) -> dict[str, Any]:
        return self._run_json(
            [*self._base_args(namespace=namespace), "create", "-f", "-"],
            input_text=json.dumps(manifest),
        )

    def delete_resource(
        self,
        kind: str,
        name: str,
        *,
        namespace: str | None = None,
        ignore_not_found: bool = False,
    ) -> None:
        command = [*self._base_args(namespace=namespace), "delete", kind, name, "--wait=false"]
        if ignore_not_found:
            command.append("--ignore-not-found=true")
        self._run(command)

    def patch_resource(
        self,
        kind: str,
        name: str,
        patch: dict[str, Any],
        *,
        namespace: str | None = None,
    ) -> None:
        self._run(
            [
                *self._base_args(namespace=namespace),
                "patch",
                kind,
                name,
                "--type",
                "merge",
                "-p",
                json.dumps(patch, separators=(",", ":")),
            ]
        )

    def cluster_info(self) -> str:
        return str(self._run([*self._base_args(), "cluster-info"]).stdout or "").strip()

    def get_tool(self, name: str, *, namespace: str | None = None) -> dict[str, Any]:
        return self.get_resource(TOOL_RESOURCE, name, namespace=namespace)

    def list_tools(
        self,
        *,
        namespace: str | None = None,
        all_namespaces: bool = False,
    ) -> list[dict[str, Any]]:
        return self.list_resources(TOOL_RESOURCE, namespace=namespace, all_namespaces=all_namespaces)

    def list_job_pods(self, job_name: str, *, namespace: str | None = None) -> list[dict[str, Any]]:
        return self.list_resources(
            "pods",
            namespace=namespace,
            selector=f"{JOB_NAME_POD_LABEL}={job_name}",
        )

    def watch_job(self, job_name: str, *, namespace: str | None = None) -> KubectlStream:
        return self._open_stream(
            [
                *self._base_args(namespace=namespace),
                "get",
                "job",
                job_name,
                "--watch",
                "--output-watch-events",
                "--request-timeout=0",
                "-o",
                "json",
            ]
        )

    def stream_logs(
        self,
        pod_name: str,
        *,
        namespace: str | None = None,
        follow: bool = True,
        tail: int | None = None,
    ) -> KubectlStream:
        command = [*self._base_args(namespace=namespace), "logs", pod_name]
        if follow:
            command.append("--follow")
        if tail is not None and tail > 0:
            command.append(f"--tail={int(tail)}")
        return self._open_stream(command)
