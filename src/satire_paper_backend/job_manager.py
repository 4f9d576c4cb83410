"""
Job orchestration and lifecycle management for satirical paper generation.

This module manages the end-to-end lifecycle of generation jobs:
- Job creation and submission
- Asynchronous four-stage pipeline execution
  (prompt -> LaTeX source -> PDF -> upload)
- Eviction of jobs whose terminal status has been read
- Periodic removal of abandoned jobs

The JobManager class provides the core business logic for the API, coordinating
between request handlers, the job store, and the generation, compilation and
storage adapters.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set
from uuid import uuid4

from .compiler import LatexCompiler
from .errors import CompilationError, StorageError
from .generator import TextGenerator
from .job_store import JobStore
from .latex import extract_title, strip_code_fences
from .models import JobStatus
from .storage import StorageBackend
from .utils import build_pdf_filename, make_job_workdir, remove_directory

logger = logging.getLogger(__name__)

PROMPT_FAILURE = "Failed to build prompt"
DOCUMENT_FAILURE = "Failed to generate document source"


@dataclass
class RenderResult:
    title: str
    url: str


class JobManager:
    """
    Central coordinator for job lifecycle management.

    Each submitted job runs as its own detached asyncio task. Tasks only reach
    job state through the :class:`JobStore`, so a job that was swept while
    its pipeline was still running is silently dropped.

    Attributes:
        store: Registry of job records
        work_root: Parent directory for per-job scratch directories
            (system temp dir when None)
        job_timeout: Age in seconds after which an untouched job is swept
        sweep_interval: Seconds between expiry sweeps
        eviction_delay: Seconds a terminal job survives after being read
    """

    def __init__(
        self,
        store: JobStore,
        generator: TextGenerator,
        compiler: LatexCompiler,
        storage: StorageBackend,
        work_root: Optional[Path] = None,
        job_timeout: float = 60.0,
        sweep_interval: float = 60.0,
        eviction_delay: float = 5.0,
    ) -> None:
        self.store = store
        self.generator = generator
        self.compiler = compiler
        self.storage = storage
        self.work_root = work_root
        self.job_timeout = job_timeout
        self.sweep_interval = sweep_interval
        self.eviction_delay = eviction_delay
        self._tasks: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None
        # Jobs with an eviction timer already pending
        self._evicting: Set[str] = set()

    @property
    def active_pipelines(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str, topic: str, is_premium: bool) -> str:
        """
        Launch the pipeline for an already created job without awaiting it.

        Must be called from within the running event loop.
        """
        task = asyncio.create_task(self.run_pipeline(job_id, topic, is_premium), name=f"pipeline-{job_id[:8]}")
        # The loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Job {job_id} submitted")
        return job_id

    def discard(self, job_id: str) -> None:
        if self.store.delete(job_id):
            logger.info(f"Job {job_id} discarded")

    def _advance(self, job_id: str, status: JobStatus) -> bool:
        """Move the job to the next stage; False once the record is gone."""
        if not self.store.update(job_id, status=status):
            logger.info(f"Job {job_id} no longer tracked, stopping before {status.value}")
            return False
        logger.info(f"Job {job_id} -> {status.value}")
        return True

    def _fail(self, job_id: str, message: str) -> None:
        logger.error(f"Job {job_id} failed: {message}")
        self.store.update(job_id, status=JobStatus.ERROR, message=message)

    async def run_pipeline(self, job_id: str, topic: str, is_premium: bool) -> None:
        """
        Execute all stages for one job.

        The job always ends in ``completed`` or ``error`` (unless it was
        removed from the store meanwhile), and its scratch directory is
        removed whichever stage stopped the run.
        """
        work_dir: Optional[Path] = None
        try:
            if not self._advance(job_id, JobStatus.PROMPTING):
                return
            try:
                prompt = await self.generator.expand_prompt(topic)
            except Exception as exc:
                logger.error(f"Job {job_id} prompt expansion raised: {exc}")
                prompt = None
            if not prompt:
                self._fail(job_id, PROMPT_FAILURE)
                return

            if not self._advance(job_id, JobStatus.GENERATING):
                return
            try:
                raw_document = await self.generator.generate_document(prompt, premium=is_premium)
            except Exception as exc:
                logger.error(f"Job {job_id} document generation raised: {exc}")
                raw_document = None
            if not raw_document:
                self._fail(job_id, DOCUMENT_FAILURE)
                return

            source = strip_code_fences(raw_document)
            title = extract_title(source)
            logger.info(f"Job {job_id} generated '{title}'")

            if not self._advance(job_id, JobStatus.FINALIZING):
                return
            work_dir = make_job_workdir(job_id, self.work_root)
            try:
                url = await self._compile_and_upload(source, title, job_id, work_dir)
            except CompilationError as exc:
                self._fail(job_id, f"Failed to generate PDF: {exc.reason}")
                return
            except StorageError as exc:
                self._fail(job_id, f"Error: {exc}")
                return

            self.store.update(job_id, status=JobStatus.COMPLETED, url=url, title=title)
            logger.info(f"Job {job_id} completed: {url}")
        except Exception as exc:
            logger.exception(f"Error processing job {job_id}")
            self._fail(job_id, f"Error: {exc}")
        finally:
            if work_dir is not None:
                remove_directory(work_dir)

    async def _compile_and_upload(self, source: str, title: str, name_id: str, work_dir: Path) -> str:
        pdf_path = await self.compiler.compile(source, work_dir)
        data = pdf_path.read_bytes()
        filename = build_pdf_filename(title, name_id)
        logger.info(f"Uploading PDF with filename: {filename}")
        return await self.storage.upload(filename, data)

    async def render_document(self, source: str) -> RenderResult:
        """
        Compile and upload caller-provided LaTeX outside the job pipeline.

        Raises:
            CompilationError: If the document does not compile
            StorageError: If the upload fails
        """
        render_id = uuid4().hex
        title = extract_title(source)
        work_dir = make_job_workdir(render_id, self.work_root)
        try:
            url = await self._compile_and_upload(source, title, render_id, work_dir)
        finally:
            remove_directory(work_dir)
        return RenderResult(title=title, url=url)

    def schedule_eviction(self, job_id: str) -> bool:
        """
        Remove a job shortly after its terminal status was sent to a client.

        Returns False if a removal for this job is already pending.
        """
        if job_id in self._evicting:
            return False
        self._evicting.add(job_id)
        loop = asyncio.get_running_loop()
        loop.call_later(self.eviction_delay, self._evict, job_id)
        return True

    def _evict(self, job_id: str) -> None:
        self._evicting.discard(job_id)
        if self.store.delete(job_id):
            logger.info(f"Cleaning up job {job_id}")

    def sweep(self) -> List[str]:
        return self.store.sweep_expired(int(self.job_timeout * 1000))

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.info(f"Expiry sweep removed {len(removed)} job(s)")

    def start(self) -> None:
        """Start the periodic expiry sweep on the running loop."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="job-expiry-sweep")

    async def stop(self) -> None:
        """Stop the sweep and cancel pipelines still in flight."""
        pending = list(self._tasks)
        if self._sweeper is not None:
            pending.append(self._sweeper)
            self._sweeper = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
