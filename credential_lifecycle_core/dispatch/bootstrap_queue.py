"""
Bootstrap job dispatch.

Saving a credential ends at "job enqueued": the Sync Job row is the
durable record and the queue only carries its id. Workers pull ids and
hand them to a runner, normally ``AppContext.run_bootstrap_job``.

Two transports are provided: an in-process queue drained by a worker
thread, and an Azure Storage Queue for multi-process deployments.
"""

import json
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.queue import QueueClient
from pydantic_core import to_jsonable_python

from ..constants import QueueName, Timeouts
from ..utils.logger import get_logger

JobRunner = Callable[[str], Any]


class BootstrapQueue(ABC):
    """Hands bootstrap job ids to workers."""

    def __init__(self, runner: Optional[JobRunner] = None):
        self.runner = runner
        self.logger = get_logger()

    @abstractmethod
    def enqueue(self, job_id: str) -> None:
        """Queue a job id. Raises on transport failure; the job row stays pending."""

    def set_runner(self, runner: JobRunner) -> None:
        self.runner = runner

    def _run(self, job_id: str) -> bool:
        """Run one job, logging instead of raising so one bad job never stops a worker."""
        if self.runner is None:
            raise RuntimeError("No bootstrap runner configured")
        try:
            self.runner(job_id)
        except Exception as e:
            self.logger.exception(
                f"Bootstrap job failed to run: {str(e)}",
                extra={"job_id": job_id, "error_type": type(e).__name__},
            )
            return False
        return True

    def close(self) -> None:
        """Release transport resources."""


class InProcessBootstrapQueue(BootstrapQueue):
    """Thread-safe in-memory queue with an optional background worker."""

    def __init__(self, runner: Optional[JobRunner] = None):
        super().__init__(runner)
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def enqueue(self, job_id: str) -> None:
        self._queue.put(job_id)
        self.logger.debug("Bootstrap job enqueued", extra={"job_id": job_id})

    def pending_count(self) -> int:
        return self._queue.qsize()

    def process_pending(self) -> int:
        """Run every queued job on the calling thread. Returns how many ran."""
        processed = 0
        while True:
            try:
                job_id = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                self._run(job_id)
                processed += 1
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="bootstrap-worker", daemon=True)
        self._thread.start()
        self.logger.info("Bootstrap worker started")

    def stop(self, timeout: float = Timeouts.WORKER_SHUTDOWN) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            self.logger.info("Bootstrap worker stopped")

    def close(self) -> None:
        self.stop()

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                job_id = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._run(job_id)
            finally:
                self._queue.task_done()


class AzureBootstrapQueue(BootstrapQueue):
    """Bootstrap job ids carried as ``{"job_id": ...}`` messages on an Azure Storage Queue."""

    def __init__(
        self,
        connection_string: str,
        queue_name: str = QueueName.BOOTSTRAP.value,
        runner: Optional[JobRunner] = None,
        visibility_timeout: int = 300,
        queue_client: Optional[QueueClient] = None,
    ):
        super().__init__(runner)
        self.queue_name = queue_name
        self.visibility_timeout = visibility_timeout
        self.queue_client = queue_client or QueueClient.from_connection_string(
            conn_str=connection_string, queue_name=queue_name
        )

    def enqueue(self, job_id: str) -> None:
        message = json.dumps(to_jsonable_python({"job_id": job_id}))
        try:
            self.queue_client.send_message(message)
        except ResourceNotFoundError:
            self.logger.debug(f"Queue {self.queue_name} not found, creating it...")
            self.queue_client.create_queue()
            self.queue_client.send_message(message)
        self.logger.debug(
            "Bootstrap job enqueued", extra={"job_id": job_id, "queue_name": self.queue_name}
        )

    def process_messages(self, max_messages: int = 32) -> int:
        """
        Receive and run up to ``max_messages`` jobs.

        A message is deleted once its job has run, whatever the job's
        outcome; bootstrap failures are recorded on the job row. Messages
        that cannot be decoded are deleted and logged.
        """
        processed = 0
        messages = self.queue_client.receive_messages(
            messages_per_page=min(max_messages, 32), visibility_timeout=self.visibility_timeout
        )
        for message in messages:
            if processed >= max_messages:
                break
            job_id = self._job_id(message.content)
            if job_id is not None:
                self._run(job_id)
                processed += 1
            self.queue_client.delete_message(message)
        return processed

    def _job_id(self, content: Any) -> Optional[str]:
        try:
            data = json.loads(content) if isinstance(content, (str, bytes)) else content
            return str(data["job_id"])
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error(
                f"Discarding malformed bootstrap message: {str(e)}",
                extra={"queue_name": self.queue_name, "error_type": type(e).__name__},
            )
            return None

    def close(self) -> None:
        self.queue_client.close()
