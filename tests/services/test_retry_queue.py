"""
Tests for taxflow_kernel.services.retry_queue.

Enqueue, claim (drain), backoff reschedule, exhaustion, manual retry,
dedup, stale-claim release and stats.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from taxflow_kernel.domain.backoff import BackoffPolicy
from taxflow_kernel.domain.dtos import KSEF_SUBMISSION_RETRY, RetryTaskStatus
from taxflow_kernel.exceptions import RetryNotAllowedError, RetryTaskNotFoundError
from taxflow_kernel.services.retry_queue import RetryQueueService

from tests.conftest import OTHER_TENANT, TENANT

PAYLOAD = {"invoice": {"invoiceNumber": "FV/7/2026"}, "invoiceNumber": "FV/7/2026"}


def _enqueue(queue, **kwargs):
    return queue.enqueue(TENANT, KSEF_SUBMISSION_RETRY, PAYLOAD, **kwargs)


def _fail_once(queue, task_id, error="KSeF unavailable"):
    claimed = queue.drain_eligible()
    assert task_id in [t.id for t in claimed]
    return queue.reschedule(task_id, error)


class TestEnqueue:
    def test_new_task_is_pending_and_eligible_now(self, retry_queue, clock):
        task = _enqueue(retry_queue, dedup_key="FV/7/2026")

        assert task.status == RetryTaskStatus.PENDING
        assert task.attempt == 0
        assert task.max_attempts == 5
        assert task.next_eligible_at == clock.now()
        assert task.payload == PAYLOAD
        assert task.priority == 1

    def test_max_attempts_must_be_positive(self, retry_queue):
        with pytest.raises(ValueError):
            _enqueue(retry_queue, max_attempts=0)

    def test_dedup_returns_open_task(self, retry_queue, captured_logs):
        first = _enqueue(retry_queue, dedup_key="FV/7/2026")
        second = _enqueue(retry_queue, dedup_key="FV/7/2026")

        assert first.id == second.id
        assert any(r["message"] == "retry_task_deduplicated" for r in captured_logs())

    def test_dedup_is_per_tenant(self, retry_queue):
        first = _enqueue(retry_queue, dedup_key="FV/7/2026")
        other = retry_queue.enqueue(OTHER_TENANT, KSEF_SUBMISSION_RETRY, PAYLOAD, dedup_key="FV/7/2026")
        assert first.id != other.id

    def test_failed_task_does_not_block_new_enqueue(self, retry_queue):
        task = _enqueue(retry_queue, max_attempts=1, dedup_key="FV/7/2026")
        _fail_once(retry_queue, task.id)

        again = _enqueue(retry_queue, dedup_key="FV/7/2026")
        assert again.id != task.id


class TestDrain:
    def test_claims_eligible_and_marks_processing(self, retry_queue, clock):
        task = _enqueue(retry_queue)

        claimed = retry_queue.drain_eligible()

        assert [t.id for t in claimed] == [task.id]
        assert claimed[0].status == RetryTaskStatus.PROCESSING
        assert claimed[0].claimed_at == clock.now()

    def test_second_drain_claims_nothing(self, retry_queue):
        _enqueue(retry_queue)
        assert len(retry_queue.drain_eligible()) == 1
        assert retry_queue.drain_eligible() == []

    def test_future_tasks_not_claimed(self, retry_queue, clock):
        task = _enqueue(retry_queue)
        _fail_once(retry_queue, task.id)

        assert retry_queue.drain_eligible() == []
        clock.advance(10)
        assert [t.id for t in retry_queue.drain_eligible()] == [task.id]

    def test_batch_size_limits_claims(self, retry_queue):
        for _ in range(4):
            _enqueue(retry_queue)
        assert len(retry_queue.drain_eligible(batch_size=3)) == 3
        assert len(retry_queue.drain_eligible(batch_size=3)) == 1

    def test_higher_priority_first(self, retry_queue, clock):
        low = _enqueue(retry_queue, priority=1)
        clock.advance(1)
        high = _enqueue(retry_queue, priority=5)

        assert [t.id for t in retry_queue.drain_eligible()] == [high.id, low.id]

    def test_kind_filter(self, retry_queue):
        _enqueue(retry_queue)
        other = retry_queue.enqueue(TENANT, "upo_download", {})
        assert [t.id for t in retry_queue.drain_eligible(kind="upo_download")] == [other.id]

    def test_concurrent_drains_never_double_claim(self, engine, clock):
        factory = sessionmaker(bind=engine, expire_on_commit=False)
        setup = factory()
        for _ in range(6):
            RetryQueueService(setup, clock).enqueue(TENANT, KSEF_SUBMISSION_RETRY, {})
        setup.commit()
        setup.close()

        s1, s2 = factory(), factory()
        first = RetryQueueService(s1, clock).drain_eligible(batch_size=4)
        s1.commit()
        second = RetryQueueService(s2, clock).drain_eligible(batch_size=4)
        s2.commit()

        ids_1 = {t.id for t in first}
        ids_2 = {t.id for t in second}
        assert not ids_1 & ids_2
        assert len(ids_1 | ids_2) == 6
        s1.close()
        s2.close()


class TestRescheduleAndExhaustion:
    def test_reschedule_applies_backoff(self, retry_queue, clock):
        task = _enqueue(retry_queue)

        updated = _fail_once(retry_queue, task.id, "timeout")

        assert updated.status == RetryTaskStatus.PENDING
        assert updated.attempt == 1
        assert updated.last_error == "timeout"
        assert updated.next_eligible_at == clock.now() + timedelta(seconds=10)

    def test_backoff_grows_until_cap(self, session, clock):
        queue = RetryQueueService(
            session, clock,
            backoff=BackoffPolicy(base_delay_ms=1000, max_delay_ms=4000, rng=lambda: 0.0),
            max_attempts=10,
        )
        task = _enqueue(queue)

        delays = []
        for _ in range(5):
            updated = _fail_once(queue, task.id)
            delays.append(updated.next_eligible_at - clock.now())
            clock.set_time(updated.next_eligible_at)

        assert delays == [timedelta(seconds=s) for s in (2, 4, 4, 4, 4)]

    def test_exhausts_after_max_attempts(self, retry_queue, clock, failure_marker, notifier):
        task = _enqueue(retry_queue, dedup_key="FV/7/2026")

        for expected_attempt in range(1, 5):
            updated = _fail_once(retry_queue, task.id)
            assert updated.status == RetryTaskStatus.PENDING
            assert updated.attempt == expected_attempt
            clock.set_time(updated.next_eligible_at)

        final = _fail_once(retry_queue, task.id, "still down")

        assert final.status == RetryTaskStatus.FAILED
        assert final.attempt == 5
        assert final.failed_at == clock.now()
        assert retry_queue.drain_eligible() == []
        assert failure_marker.calls == [(TENANT, "FV/7/2026", "still down")]
        assert len(notifier.calls) == 1
        assert notifier.calls[0][0].id == task.id

    def test_marker_error_recorded_not_raised(self, session, clock, notifier):
        class BrokenMarker:
            def mark_submission_failed(self, *args):
                raise RuntimeError("invoice service offline")

        queue = RetryQueueService(
            session, clock, backoff=BackoffPolicy(rng=lambda: 0.0),
            failure_marker=BrokenMarker(), notifier=notifier,
        )
        task = _enqueue(queue, max_attempts=1)

        final = _fail_once(queue, task.id, "down")

        assert final.status == RetryTaskStatus.FAILED
        assert "invoice service offline" in final.last_error
        assert len(notifier.calls) == 1

    def test_complete_stores_result(self, retry_queue, clock):
        task = _enqueue(retry_queue)
        retry_queue.drain_eligible()

        done = retry_queue.complete(task.id, {"referenceNumber": "KSEF-9"})

        assert done.status == RetryTaskStatus.COMPLETED
        assert done.result == {"referenceNumber": "KSEF-9"}
        assert done.completed_at == clock.now()

    def test_outcomes_require_processing(self, retry_queue):
        task = _enqueue(retry_queue)
        with pytest.raises(RetryNotAllowedError):
            retry_queue.complete(task.id)
        with pytest.raises(RetryNotAllowedError):
            retry_queue.reschedule(task.id, "x")


class TestManualRetry:
    def test_revives_failed_task(self, retry_queue, clock):
        task = _enqueue(retry_queue, max_attempts=1)
        _fail_once(retry_queue, task.id)
        clock.advance(3600)

        revived = retry_queue.manual_retry(task.id)

        assert revived.status == RetryTaskStatus.PENDING
        assert revived.attempt == 0
        assert revived.next_eligible_at == clock.now()
        assert revived.failed_at is None
        assert [t.id for t in retry_queue.drain_eligible()] == [task.id]

    def test_only_failed_tasks(self, retry_queue):
        task = _enqueue(retry_queue)
        with pytest.raises(RetryNotAllowedError):
            retry_queue.manual_retry(task.id)

    def test_by_dedup_key(self, retry_queue):
        task = _enqueue(retry_queue, max_attempts=1, dedup_key="FV/7/2026")
        _fail_once(retry_queue, task.id)

        revived = retry_queue.manual_retry_by_key(TENANT, KSEF_SUBMISSION_RETRY, "FV/7/2026")
        assert revived.id == task.id

    def test_by_unknown_key(self, retry_queue):
        with pytest.raises(RetryTaskNotFoundError):
            retry_queue.manual_retry_by_key(TENANT, KSEF_SUBMISSION_RETRY, "FV/404/2026")

    def test_unknown_task(self, retry_queue):
        with pytest.raises(RetryTaskNotFoundError):
            retry_queue.manual_retry(uuid4())


class TestMaintenanceAndQueries:
    def test_release_stale_claims(self, retry_queue, clock):
        task = _enqueue(retry_queue)
        retry_queue.drain_eligible()

        clock.advance(60)
        assert retry_queue.release_stale() == 0

        clock.advance(300)
        assert retry_queue.release_stale() == 1

        released = retry_queue.get_task(task.id)
        assert released.status == RetryTaskStatus.PENDING
        assert released.attempt == 0
        assert released.claimed_at is None

    def test_stats(self, retry_queue):
        done = _enqueue(retry_queue)
        retry_queue.drain_eligible()
        retry_queue.complete(done.id)
        _enqueue(retry_queue)
        retry_queue.enqueue(OTHER_TENANT, KSEF_SUBMISSION_RETRY, {})

        stats = retry_queue.get_stats(TENANT)

        assert stats.completed == 1
        assert stats.pending == 1
        assert stats.total == 2

    def test_list_tasks_by_status(self, retry_queue):
        _enqueue(retry_queue)
        failed = _enqueue(retry_queue, max_attempts=1)
        for t in retry_queue.drain_eligible():
            retry_queue.reschedule(t.id, "x")

        assert [t.id for t in retry_queue.list_tasks(TENANT, status=RetryTaskStatus.FAILED)] == [
            failed.id,
        ]
        assert len(retry_queue.list_tasks(TENANT)) == 2
