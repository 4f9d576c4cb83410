"""
Tests for the background job pipeline.

The pipeline coroutine is awaited directly so every stage outcome can be
checked deterministically.
"""

import asyncio

import pytest

from satire_paper_backend.errors import StorageError
from satire_paper_backend.job_manager import DOCUMENT_FAILURE, PROMPT_FAILURE
from satire_paper_backend.latex import REQUIRED_PACKAGE
from satire_paper_backend.models import JobStatus
from satire_paper_backend.utils import build_pdf_filename

from .fakes import SAMPLE_LATEX, FakeStorage

FULL_PROGRESSION = [JobStatus.PROMPTING, JobStatus.GENERATING, JobStatus.FINALIZING, JobStatus.COMPLETED]


class TestPipelineSuccess:
    @pytest.mark.asyncio
    async def test_completes_through_every_stage(self, manager, store, storage):
        job_id = store.create()
        await manager.run_pipeline(job_id, "artificial intelligence", False)

        record = store.get(job_id)
        assert record.status is JobStatus.COMPLETED
        assert record.title == "On the Thermodynamics of Office Coffee"
        assert record.url == f"https://cdn.example.com/{storage.uploads[0][0]}"
        assert record.message is None
        assert store.history[job_id] == FULL_PROGRESSION

    @pytest.mark.asyncio
    async def test_upload_uses_sanitized_title_and_job_fragment(self, manager, store, storage):
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        filename, data = storage.uploads[0]
        assert filename == build_pdf_filename("On the Thermodynamics of Office Coffee", job_id)
        assert filename.endswith(f"-{job_id[:8]}.pdf")
        assert data == b"%PDF-1.4 fake"

    @pytest.mark.asyncio
    async def test_code_fences_are_stripped_before_compiling(self, manager, store, generator, compiler):
        generator.document = f"```latex\n{SAMPLE_LATEX}```"
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        assert store.get(job_id).status is JobStatus.COMPLETED
        assert compiler.sources[0] == f"\n{SAMPLE_LATEX}"

    @pytest.mark.asyncio
    async def test_topic_and_premium_flag_are_forwarded(self, manager, store, generator):
        job_id = store.create()
        await manager.run_pipeline(job_id, "quantum toast", True)

        assert generator.prompt_calls == ["quantum toast"]
        assert generator.document_calls == [("A detailed satirical prompt", True)]

    @pytest.mark.asyncio
    async def test_work_directory_is_removed(self, manager, store, work_root):
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)
        assert list(work_root.iterdir()) == []


class TestPipelineFailures:
    @pytest.mark.asyncio
    async def test_missing_prompt_stops_pipeline(self, manager, store, generator):
        generator.prompt = None
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        record = store.get(job_id)
        assert record.status is JobStatus.ERROR
        assert record.message == PROMPT_FAILURE
        assert record.url is None and record.title is None
        assert generator.document_calls == []
        assert store.history[job_id] == [JobStatus.PROMPTING, JobStatus.ERROR]

    @pytest.mark.asyncio
    async def test_prompt_exception_is_a_stage_failure(self, manager, store, generator):
        generator.prompt = RuntimeError("rate limited")
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        assert store.get(job_id).message == PROMPT_FAILURE

    @pytest.mark.asyncio
    async def test_missing_document_stops_pipeline(self, manager, store, generator, compiler):
        generator.document = ""
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        record = store.get(job_id)
        assert record.status is JobStatus.ERROR
        assert record.message == DOCUMENT_FAILURE
        assert compiler.calls == 0
        assert store.history[job_id] == [JobStatus.PROMPTING, JobStatus.GENERATING, JobStatus.ERROR]

    @pytest.mark.asyncio
    async def test_compile_failure_reports_reason_after_two_attempts(self, manager, store, compiler, storage, work_root):
        compiler.succeeds = lambda source: False
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        record = store.get(job_id)
        assert record.status is JobStatus.ERROR
        assert record.message.startswith("Failed to generate PDF")
        assert "Undefined control sequence" in record.message
        assert compiler.calls == 2
        assert storage.uploads == []
        assert list(work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_fixup_retry_recovers(self, manager, store, compiler):
        compiler.succeeds = lambda source: REQUIRED_PACKAGE in source
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        assert store.get(job_id).status is JobStatus.COMPLETED
        assert compiler.calls == 2

    @pytest.mark.asyncio
    async def test_upload_failure_sets_message(self, manager, store, work_root):
        manager.storage = FakeStorage(error=StorageError("Failed to upload file to S3: AccessDenied"))
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        record = store.get(job_id)
        assert record.status is JobStatus.ERROR
        assert record.message == "Error: Failed to upload file to S3: AccessDenied"
        assert record.url is None and record.title is None
        assert store.history[job_id][-2:] == [JobStatus.FINALIZING, JobStatus.ERROR]
        assert list(work_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unexpected_upload_exception_is_recorded(self, manager, store):
        manager.storage = FakeStorage(error=ConnectionError("reset by peer"))
        job_id = store.create()
        await manager.run_pipeline(job_id, "coffee", False)

        record = store.get(job_id)
        assert record.status is JobStatus.ERROR
        assert "reset by peer" in record.message

    @pytest.mark.asyncio
    async def test_job_removed_mid_pipeline_is_ignored(self, manager, store, generator, compiler, storage):
        job_id = store.create()
        generator.on_generate = lambda: store.delete(job_id)

        await manager.run_pipeline(job_id, "coffee", False)

        assert job_id not in store
        assert store.get(job_id) is None
        assert compiler.calls == 0
        assert storage.uploads == []

    @pytest.mark.asyncio
    async def test_job_removed_during_prompt_skips_document_generation(self, manager, store, generator, storage):
        job_id = store.create()

        async def prompt_then_sweep(topic):
            store.delete(job_id)
            return "A detailed satirical prompt"

        generator.expand_prompt = prompt_then_sweep

        await manager.run_pipeline(job_id, "coffee", False)

        assert generator.document_calls == []
        assert storage.uploads == []

    @pytest.mark.asyncio
    async def test_job_removed_before_start_does_nothing(self, manager, store, generator):
        job_id = store.create()
        store.delete(job_id)

        await manager.run_pipeline(job_id, "coffee", False)

        assert generator.prompt_calls == []


class TestScheduling:
    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, manager, store):
        job_id = store.create()
        manager.submit(job_id, "coffee", False)

        # submit does not wait for the pipeline
        assert store.get(job_id).status is JobStatus.QUEUED
        assert manager.active_pipelines == 1

        for _ in range(100):
            if store.get(job_id).status.is_terminal:
                break
            await asyncio.sleep(0.01)

        assert store.get(job_id).status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_jobs_do_not_interfere(self, manager, store, storage):
        job_ids = [store.create() for _ in range(5)]
        await asyncio.gather(*(manager.run_pipeline(job_id, f"topic {i}", False) for i, job_id in enumerate(job_ids)))

        for job_id in job_ids:
            assert store.get(job_id).status is JobStatus.COMPLETED
            assert store.history[job_id] == FULL_PROGRESSION
        assert len({filename for filename, _ in storage.uploads}) == 5

    @pytest.mark.asyncio
    async def test_schedule_eviction_removes_job_later(self, manager, store):
        manager.eviction_delay = 0.01
        job_id = store.create()

        manager.schedule_eviction(job_id)
        assert job_id in store

        await asyncio.sleep(0.05)
        assert job_id not in store

    @pytest.mark.asyncio
    async def test_repeated_reads_schedule_a_single_eviction(self, manager, store):
        manager.eviction_delay = 0.01
        job_id = store.create()

        assert manager.schedule_eviction(job_id) is True
        assert manager.schedule_eviction(job_id) is False
        assert manager.schedule_eviction(job_id) is False

        await asyncio.sleep(0.05)
        assert job_id not in store

        # Once the timer has fired the id is no longer pending
        assert manager.schedule_eviction(job_id) is True

    @pytest.mark.asyncio
    async def test_discard_removes_job(self, manager, store):
        job_id = store.create()
        manager.discard(job_id)
        assert store.get(job_id) is None

    @pytest.mark.asyncio
    async def test_sweep_loop_removes_expired_jobs(self, manager, store):
        manager.sweep_interval = 0.01
        manager.job_timeout = 0
        job_id = store.create()
        await asyncio.sleep(0.002)

        manager.start()
        await asyncio.sleep(0.05)
        await manager.stop()

        assert job_id not in store

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_pipelines(self, manager, store, generator):
        gate = asyncio.Event()

        async def blocked_prompt(topic):
            await gate.wait()
            return "never"

        generator.expand_prompt = blocked_prompt
        job_id = store.create()
        manager.start()
        manager.submit(job_id, "coffee", False)
        await asyncio.sleep(0.01)

        await manager.stop()

        assert manager.active_pipelines == 0
        assert store.get(job_id).status is JobStatus.PROMPTING
