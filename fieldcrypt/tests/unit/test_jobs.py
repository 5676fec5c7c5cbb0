"""
Unit tests for the migration job queue: lifecycle, resume and one-shot finalization.
"""
import uuid
from unittest.mock import patch

import pytest

from fieldcrypt.core.crypto.keys import KeyRef
from fieldcrypt.core.crypto.service import is_encrypted
from fieldcrypt.core.exceptions import JobNotFoundError
from fieldcrypt.core.messages import Severity
from fieldcrypt.core.migration.models import BatchState, InvocationContext, JobStatus, Operation
from fieldcrypt.core.migration.services import MigrationServices


class TestQueueManagement:

    def test_enqueue(self, services):
        job = services.queue.enqueue(Operation.ENCRYPT, InvocationContext.UNINSTALL)

        assert job.id is not None
        assert job.status == JobStatus.PENDING.value
        assert job.operation == "encrypt"
        assert job.context == "uninstall"
        assert job.state is None
        assert services.queue.pending() == [job]

    def test_enqueue_accepts_strings(self, services):
        job = services.queue.enqueue("decrypt", "none")
        assert job.operation == "decrypt"

    def test_get_by_string_id(self, services):
        job = services.queue.enqueue(Operation.ENCRYPT)
        assert services.queue.get(str(job.id)) is job

    @pytest.mark.parametrize("job_id", ["not-a-uuid", uuid.uuid4()])
    def test_get_unknown(self, services, job_id):
        with pytest.raises(JobNotFoundError):
            services.queue.get(job_id)

    def test_list_by_status(self, services, add_users):
        add_users(3)
        done = services.queue.enqueue(Operation.ENCRYPT)
        services.queue.run(done.id)
        waiting = services.queue.enqueue(Operation.DECRYPT)

        assert services.queue.list(JobStatus.COMPLETED) == [done]
        assert services.queue.list(JobStatus.PENDING) == [waiting]
        assert services.queue.pending() == [waiting]


class TestStepping:

    def test_each_step_commits_progress(self, services, add_users):
        add_users(40)
        job = services.queue.enqueue(Operation.ENCRYPT)

        job = services.queue.run_step(job.id)

        assert job.status == JobStatus.PROCESSING.value
        assert job.processed_count == 15
        assert job.total_count == 40
        assert job.steps == 1
        assert job.started_at is not None
        assert job.completion_fraction == 0.375
        assert BatchState.from_dict(job.state).summary.updated_count == 15

    def test_run_to_completion(self, services, add_users, stored):
        add_users(40)
        job = services.queue.enqueue(Operation.ENCRYPT)

        job = services.queue.run(job.id)

        assert job.status == JobStatus.COMPLETED.value
        assert job.steps == 3
        assert job.finalized is True
        assert job.completed_at is not None
        assert all(is_encrypted(mail) for mail, _ in stored().values())
        result = services.queue.last_finalize_result
        assert result.real_success is True
        assert result.updated_count == 40

    def test_max_steps_pauses(self, services, add_users):
        add_users(40)
        job = services.queue.enqueue(Operation.ENCRYPT)

        job = services.queue.run(job.id, max_steps=2)

        assert job.status == JobStatus.PROCESSING.value
        assert job.processed_count == 30
        assert services.queue.last_finalize_result is None

    def test_resume_with_new_worker(self, db, settings, services, add_users, stored):
        """A fresh queue picks the job up from its persisted state."""
        ids = add_users(40)
        job = services.queue.enqueue(Operation.ENCRYPT)
        services.queue.run(job.id, max_steps=1)

        worker = MigrationServices.build(db, settings)
        job = worker.queue.run(job.id)

        assert job.status == JobStatus.COMPLETED.value
        assert job.steps == 3
        summary = BatchState.from_dict(job.state).summary
        assert summary.updated_user_ids == ids
        assert all(is_encrypted(mail) and is_encrypted(init) for mail, init in stored().values())

    def test_run_pending(self, services, add_users):
        add_users(20)
        services.queue.enqueue(Operation.ENCRYPT)

        [job] = services.queue.run_pending()

        assert job.status == JobStatus.COMPLETED.value
        assert services.queue.pending() == []


class TestFinalization:

    def test_finalized_exactly_once(self, services, add_users):
        add_users(20)
        job = services.queue.enqueue(Operation.ENCRYPT)

        with patch.object(services.finalizer, "finish", wraps=services.finalizer.finish) as finish:
            services.queue.run(job.id)
            services.queue.run_step(job.id)
            services.queue.run(job.id)

        assert finish.call_count == 1
        success, summary = finish.call_args.args
        assert success is True
        assert summary.updated_count == 20

    def test_step_failure_marks_job_failed(self, services, add_users):
        add_users(40)
        job = services.queue.enqueue(Operation.ENCRYPT)
        services.queue.run_step(job.id)

        with patch.object(services.runner, "step", side_effect=RuntimeError("worker lost")):
            job = services.queue.run_step(job.id)

        assert job.status == JobStatus.FAILED.value
        assert job.last_error == "worker lost"
        assert job.finalized is True
        result = services.queue.last_finalize_result
        assert result.real_success is False
        assert result.updated_count == 15
        assert services.messages.by_severity(Severity.CRITICAL)

    def test_failure_before_first_step(self, services, add_users):
        add_users(5)
        job = services.queue.enqueue(Operation.DECRYPT)

        with patch.object(services.runner, "step", side_effect=RuntimeError("boom")):
            job = services.queue.run(job.id)

        assert job.status == JobStatus.FAILED.value
        assert job.steps == 0
        assert services.queue.last_finalize_result.updated_count == 0

    def test_failure_before_first_step_reports_table_size(self, services, add_users):
        add_users(5)
        job = services.queue.enqueue(Operation.ENCRYPT)

        with patch.object(services.runner, "step", side_effect=RuntimeError("boom")):
            services.queue.run(job.id)

        assert services.queue.last_finalize_result.total_users == 5
        [message] = services.messages.by_severity(Severity.CRITICAL)
        assert "0 of 5 users updated" in message.text

    def test_failed_page_leaves_no_user_changed(self, services, add_users, stored):
        """Users processed before a mid-page crash are rolled back with the page."""
        add_users(20)
        before = stored()
        job = services.queue.enqueue(Operation.ENCRYPT)
        transform = services.codec.transform
        seen = []

        def crash_on_fifth_row(row, operation):
            seen.append(row.id)
            if len(seen) == 5:
                raise RuntimeError("worker killed")
            return transform(row, operation)

        with patch.object(services.codec, "transform", side_effect=crash_on_fifth_row):
            job = services.queue.run_step(job.id)

        assert job.status == JobStatus.FAILED.value
        assert stored() == before
        result = services.queue.last_finalize_result
        assert result.updated_count == 0
        assert result.total_users == 20

    def test_failed_second_page_keeps_first_page(self, services, add_users, stored):
        ids = add_users(20)
        before = stored()
        job = services.queue.enqueue(Operation.ENCRYPT)
        services.queue.run_step(job.id)
        transform = services.codec.transform

        def crash_on_last_row(row, operation):
            if row.id == ids[-1]:
                raise RuntimeError("worker killed")
            return transform(row, operation)

        with patch.object(services.codec, "transform", side_effect=crash_on_last_row):
            job = services.queue.run_step(job.id)

        after = stored()
        assert job.status == JobStatus.FAILED.value
        assert all(is_encrypted(after[i][0]) for i in ids[:15])
        assert all(after[i] == before[i] for i in ids[15:])
        assert services.queue.last_finalize_result.updated_count == 15

    def test_failed_job_is_not_retried(self, services, add_users):
        add_users(5)
        job = services.queue.enqueue(Operation.ENCRYPT)
        with patch.object(services.runner, "step", side_effect=RuntimeError("boom")):
            services.queue.run(job.id)

        job = services.queue.run(job.id)

        assert job.status == JobStatus.FAILED.value
        assert job.steps == 0

    def test_change_job_cleans_up_once(self, rotation_services, add_users, db):
        """A finished key change job deletes the previous key and profile a single time."""
        crypto = rotation_services.crypto
        add_users(20, mail=lambda i: crypto.encrypt(f"u{i}@example.com", KeyRef.PREVIOUS), init=None)
        job = rotation_services.queue.enqueue(Operation.CHANGE, InvocationContext.CHANGE)

        job = rotation_services.queue.run(job.id)

        assert job.status == JobStatus.COMPLETED.value
        result = rotation_services.queue.last_finalize_result
        assert result.cleanup_actions == ["deleted key old", "deleted profile legacy"]
        assert [k.name for k in rotation_services.keys.list_keys()] == ["primary"]
