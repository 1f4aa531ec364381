from surveycore.records import (
    AnswerKind,
    ExecutionConfig,
    ReverseFillAnswer,
    ReverseFillSampleRow,
    ReverseFillSpec,
)
from surveycore.state import ExecutionState


def _state_with_samples(target, rows=(1, 2)):
    samples = [
        ReverseFillSampleRow(
            data_row_number=row,
            answers={1: ReverseFillAnswer(question_num=1, kind=AnswerKind.CHOICE, choice_index=row - 1)},
        )
        for row in rows
    ]
    state = ExecutionState(ExecutionConfig(target_num=target, reverse_fill_spec=ReverseFillSpec(samples=samples)))
    state.initialize_reverse_fill_runtime()
    return state


def test_execution_state_basics():
    state = ExecutionState(ExecutionConfig(target_num=5))
    state.ensure_worker_threads(3, "Worker")
    assert len(state.thread_progress) == 3

    state.update_thread_status("Worker-1", "测试", True)
    assert state.thread_progress["Worker-1"].status_text == "测试"
    assert state.thread_progress["Worker-1"].running is True

    state.increment_thread_success("Worker-1")
    assert state.thread_progress["Worker-1"].success_count == 1

    state.increment_success()
    assert state.cur_num == 1
    state.increment_fail()
    assert state.cur_fail == 1

    assert state.is_stopped() is False
    state.signal_stop()
    assert state.is_stopped() is True


def test_ensure_worker_threads_sets_index_and_waiting_status():
    state = ExecutionState()
    state.ensure_worker_threads(2, "")
    progress = state.thread_progress["Worker-2"]
    assert progress.thread_index == 1
    assert progress.status_text == "等待中"


def test_thread_fail_creates_entry():
    state = ExecutionState()
    state.increment_thread_fail("W")
    assert state.thread_progress["W"].fail_count == 1
    assert state.thread_progress["W"].status_text == "失败重试"


def test_snapshot_is_detached():
    state = ExecutionState()
    state.update_thread_status("Worker-1", "运行中", True)
    state.increment_success()
    snap = state.snapshot()

    state.update_thread_status("Worker-1", "已变化", True)
    state.increment_success()

    assert snap is not state
    assert snap.cur_num == 1
    assert snap.thread_progress["Worker-1"].status_text == "运行中"
    assert state.cur_num == 2


def test_terminal_stop_first_write_wins():
    state = ExecutionState()
    state.mark_terminal_stop("a", "ra", "ma")
    state.mark_terminal_stop("b", "rb", "mb")
    assert state.terminal_stop_snapshot() == ("a", "ra", "ma")


def test_signal_stop_claims_terminal_stop():
    state = ExecutionState()
    state.signal_stop()
    state.mark_terminal_stop("a", "ra", "ma")
    assert state.terminal_stop_snapshot() == ("", "", "")


def test_submission_reservations():
    state = ExecutionState()
    assert state.try_start_submission(0) is False
    assert state.try_start_submission(2) is True
    assert state.try_start_submission(2) is True
    assert state.try_start_submission(2) is False
    state.abort_submission_reservation()
    assert state.in_flight == 1
    state.complete_submission(True)
    assert (state.in_flight, state.cur_num) == (0, 1)
    state.complete_submission(False)
    assert (state.in_flight, state.cur_fail) == (0, 1)


def test_reverse_fill_disabled_without_spec():
    state = ExecutionState(ExecutionConfig())
    state.initialize_reverse_fill_runtime()
    assert state.has_reverse_fill_runtime() is False
    result = state.acquire_reverse_fill_sample("Worker-1")
    assert (result.status, result.message) == ("disabled", "reverse_fill_disabled")


def test_acquire_reserves_and_waits():
    state = _state_with_samples(target=2)
    first = state.acquire_reverse_fill_sample("Worker-1")
    assert first.status == "acquired" and first.message == "reserved"
    assert first.sample.data_row_number == 1
    again = state.acquire_reverse_fill_sample("Worker-1")
    assert again.message == "already_reserved"
    assert again.sample.data_row_number == 1
    second = state.acquire_reverse_fill_sample("Worker-2")
    assert second.sample.data_row_number == 2
    waiting = state.acquire_reverse_fill_sample("Worker-3")
    assert (waiting.status, waiting.message) == ("waiting", "reverse_fill_waiting")


def test_failed_sample_discarded_makes_target_unreachable():
    state = _state_with_samples(target=2)
    state.acquire_reverse_fill_sample("Worker-1")
    state.acquire_reverse_fill_sample("Worker-2")
    assert state.mark_reverse_fill_submission_failed("Worker-1", 0) == (1, True)
    result = state.acquire_reverse_fill_sample("Worker-3")
    assert (result.status, result.message) == ("exhausted", "reverse_fill_target_unreachable")
    assert state.is_reverse_fill_target_unreachable() is True


def test_failed_sample_requeued_within_retries():
    state = _state_with_samples(target=2)
    state.acquire_reverse_fill_sample("Worker-1")
    assert state.mark_reverse_fill_submission_failed("Worker-1", 1) == (1, False)
    assert state.acquire_reverse_fill_sample("Worker-2").sample.data_row_number == 1


def test_release_requeues_at_front():
    state = _state_with_samples(target=1)
    state.acquire_reverse_fill_sample("Worker-1")
    assert state.release_reverse_fill_sample("Worker-1", True) == 1
    assert state.release_reverse_fill_sample("Worker-1", True) is None
    assert state.acquire_reverse_fill_sample("Worker-2").sample.data_row_number == 1


def test_commit_consumes_row():
    state = _state_with_samples(target=1)
    state.acquire_reverse_fill_sample("")
    assert state.commit_reverse_fill_sample("") == 1
    assert state.release_reverse_fill_sample("", True) is None
    assert state.acquire_reverse_fill_sample("x").sample.data_row_number == 2


def test_get_reverse_fill_answer_for_thread():
    state = _state_with_samples(target=1)
    assert state.get_reverse_fill_answer(1, "Worker-1") is None
    state.acquire_reverse_fill_sample("Worker-1")
    state.acquire_reverse_fill_sample("Worker-2")
    assert state.get_reverse_fill_answer(1, "Worker-1").choice_index == 0
    assert state.get_reverse_fill_answer(1, "Worker-2").choice_index == 1
    assert state.get_reverse_fill_answer(9, "Worker-1") is None


def test_snapshot_thread_progress_keys():
    state = ExecutionState()
    state.ensure_worker_threads(1)
    rows = state.snapshot_thread_progress()
    assert rows == [
        {
            "thread_name": "Worker-1",
            "thread_index": 0,
            "success_count": 0,
            "fail_count": 0,
            "step_current": 0,
            "step_total": 0,
            "status_text": "等待中",
            "running": False,
            "last_update": 0.0,
        }
    ]