from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime
from typing import BinaryIO, Callable, TextIO

from .assembler import assemble_job, derive_job_name
from .binder import bind_arguments, unknown_arguments
from .config import RaptConfig
from .contracts import (
    JOB_STATE_FAILED,
    JOB_STATE_SUCCEEDED,
    RunOutcome,
    RunRequest,
    utcnow,
)
from .errors import JobFailed
from .kubectl import KubectlClient
from .logs import LogStreamer
from .mounts import MountMaterializer
from .submitter import submit_job
from .tools import fetch_tool
from .watcher import LifecycleWatcher

logger = logging.getLogger(__name__)

_STREAMER_STOP_SECONDS = 5.0
_SEPARATOR = "=" * 51


class ToolRunner:
    def __init__(
        self,
        client: KubectlClient,
        config: RaptConfig | None = None,
        *,
        out: TextIO | None = None,
        log_sink: BinaryIO | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self.config = config or client.config
        self._out = out if out is not None else sys.stdout
        self._log_sink = log_sink if log_sink is not None else sys.stdout.buffer
        self._clock = clock

    def _emit(self, line: str) -> None:
        self._out.write(line + "\n")
        self._out.flush()

    def run(self, request: RunRequest) -> RunOutcome:
        namespace = self.config.namespace
        tool = fetch_tool(self._client, request.tool_name, namespace=namespace)
        arguments = bind_arguments(tool.arguments, request.arguments)
        ignored = unknown_arguments(tool.arguments, request.arguments)
        if ignored:
            logger.warning(
                "Tool %s does not declare argument(s) %s; ignoring them",
                tool.name,
                ", ".join(ignored),
            )

        job_name = derive_job_name(tool.name, self._clock())
        materializer = MountMaterializer(self._client, job_name=job_name, namespace=namespace)
        try:
            bindings = materializer.materialize(request.mounts)
            job = assemble_job(
                tool,
                arguments,
                request.env,
                bindings,
                job_name=job_name,
                namespace=namespace,
                ttl_seconds=self.config.job_ttl_seconds,
            )
            handle, record = submit_job(self._client, job)
        except BaseException:
            materializer.release()
            raise
        materializer.adopt(handle)

        self._emit(f"Job '{handle.name}' created successfully")
        outcome = RunOutcome(handle=handle, job=job, record=record)
        if not (request.wait or request.follow):
            return outcome

        timeout = self.config.watch_timeout if request.timeout is None else request.timeout
        outcome.state = self._observe(outcome, follow=request.follow, timeout=timeout)
        if outcome.state == JOB_STATE_FAILED:
            raise JobFailed(handle.name)
        return outcome

    def _observe(self, outcome: RunOutcome, *, follow: bool, timeout: float) -> str:
        handle = outcome.handle
        cancel = threading.Event()
        streamer: LogStreamer | None = None
        if follow:
            self._emit("Streaming logs in real-time...")
            self._emit("Press Ctrl+C to stop following logs (job will continue running)")
            self._emit(_SEPARATOR)
            streamer = LogStreamer(
                self._client,
                handle,
                self._log_sink,
                poll_interval=self.config.pod_poll_interval,
                max_attempts=self.config.pod_max_attempts,
                cancel=cancel,
            )
            streamer.start()

        watcher = LifecycleWatcher(
            handle.name,
            on_state=lambda state: logger.info("Job %s is %s", handle.name, state),
        )
        finished = False
        try:
            with self._client.watch_job(handle.name, namespace=handle.namespace) as stream:
                state = watcher.wait(stream.events(), timeout=timeout)
            finished = True
        finally:
            if streamer is not None:
                if finished:
                    streamer.join(self.config.log_drain_seconds)
                streamer.cancel()
                if not streamer.join(_STREAMER_STOP_SECONDS):
                    logger.warning("Log streamer for job %s did not stop in time", handle.name)
                outcome.log_error = streamer.error

        if state == JOB_STATE_SUCCEEDED:
            self._emit(f"Job '{handle.name}' completed successfully")
        else:
            self._emit(f"Job '{handle.name}' failed")
        return state
