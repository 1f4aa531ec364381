"""Mutable runtime state of one task run: counters, worker progress and reverse-fill samples."""

from __future__ import annotations

import copy
import dataclasses
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from surveycore.records import (
    ExecutionConfig,
    ReverseFillAnswer,
    ReverseFillSampleRow,
    ReverseFillSpec,
)

STATUS_ACQUIRED = "acquired"
STATUS_DISABLED = "disabled"
STATUS_EXHAUSTED = "exhausted"
STATUS_WAITING = "waiting"

_UNKNOWN_THREAD = "Worker-?"


@dataclass
class ThreadProgress:
    """Progress of one worker thread."""

    thread_name: str
    thread_index: int = 0
    owner_id: int = 0
    success_count: int = 0
    fail_count: int = 0
    step_current: int = 0
    step_total: int = 0
    status_text: str = ""
    running: bool = False
    last_update_ts: float = 0.0


@dataclass
class AcquireResult:
    """Outcome of asking for a reverse-fill sample."""

    status: str
    message: str
    sample: ReverseFillSampleRow | None = None

    @property
    def acquired(self) -> bool:
        return self.status == STATUS_ACQUIRED


@dataclass
class ReverseFillRuntime:
    """Queue and bookkeeping of source samples handed out to workers."""

    spec: ReverseFillSpec
    queued_row_numbers: deque[int] = field(default_factory=deque)
    samples_by_row_number: dict[int, ReverseFillSampleRow] = field(default_factory=dict)
    reserved_row_by_thread: dict[str, int] = field(default_factory=dict)
    failure_count_by_row: dict[int, int] = field(default_factory=dict)
    committed_row_numbers: set[int] = field(default_factory=set)
    discarded_row_numbers: set[int] = field(default_factory=set)


def _thread_key(thread_name: str) -> str:
    return thread_name or _UNKNOWN_THREAD


class ExecutionState:
    """Thread-safe counters and progress for a running task."""

    def __init__(self, config: ExecutionConfig | None = None) -> None:
        self.config = config
        self.cur_num = 0
        self.cur_fail = 0
        self.proxy_unavailable_fail_count = 0
        self.device_quota_fail_count = 0
        self.terminal_stop_category = ""
        self.terminal_failure_reason = ""
        self.terminal_stop_message = ""
        self.thread_progress: dict[str, ThreadProgress | None] = {}
        self.in_flight = 0
        self.reverse_fill_runtime: ReverseFillRuntime | None = None
        self.proxy_waiting_threads = 0
        self.proxy_in_use_by_thread: dict[str, Any] = {}
        self.successful_proxy_addresses: dict[str, bool] = {}
        self.proxy_cooldown_until: dict[str, float] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._terminal_claimed = False

    def snapshot(self) -> ExecutionState:
        """Return a detached copy of the counters, progress and proxy bookkeeping."""
        with self._lock:
            snap = ExecutionState()
            snap.cur_num = self.cur_num
            snap.cur_fail = self.cur_fail
            snap.proxy_unavailable_fail_count = self.proxy_unavailable_fail_count
            snap.device_quota_fail_count = self.device_quota_fail_count
            snap.terminal_stop_category = self.terminal_stop_category
            snap.terminal_failure_reason = self.terminal_failure_reason
            snap.terminal_stop_message = self.terminal_stop_message
            snap.proxy_waiting_threads = self.proxy_waiting_threads
            snap.thread_progress = {
                name: dataclasses.replace(progress) if progress is not None else None
                for name, progress in self.thread_progress.items()
            }
            snap.proxy_in_use_by_thread = {
                name: copy.copy(lease) for name, lease in self.proxy_in_use_by_thread.items()
            }
            snap.successful_proxy_addresses = dict(self.successful_proxy_addresses)
            snap.proxy_cooldown_until = dict(self.proxy_cooldown_until)
            return snap

    def mark_terminal_stop(self, category: str, failure_reason: str, message: str) -> None:
        """Record why the run stopped; only the first call (or stop signal) counts."""
        with self._lock:
            if self._terminal_claimed:
                return
            self._terminal_claimed = True
            self.terminal_stop_category = category
            self.terminal_failure_reason = failure_reason
            self.terminal_stop_message = message

    def terminal_stop_snapshot(self) -> tuple[str, str, str]:
        with self._lock:
            return self.terminal_stop_category, self.terminal_failure_reason, self.terminal_stop_message

    def ensure_worker_threads(self, expected_count: int, prefix: str = "Worker") -> None:
        """Create waiting progress entries named <prefix>-1 .. <prefix>-N."""
        prefix = prefix or "Worker"
        with self._lock:
            for index in range(expected_count):
                name = f"{prefix}-{index + 1}"
                if name not in self.thread_progress:
                    self.thread_progress[name] = ThreadProgress(
                        thread_name=name, thread_index=index, status_text="等待中"
                    )

    def _progress(self, thread_name: str) -> ThreadProgress:
        progress = self.thread_progress.get(thread_name)
        if progress is None:
            progress = ThreadProgress(thread_name=thread_name)
            self.thread_progress[thread_name] = progress
        return progress

    def update_thread_status(self, thread_name: str, status_text: str, running: bool | None = None) -> None:
        with self._lock:
            progress = self._progress(thread_name)
            progress.status_text = status_text
            progress.last_update_ts = float(int(time.time()))
            if running is not None:
                progress.running = running

    def increment_thread_success(self, thread_name: str) -> None:
        with self._lock:
            progress = self._progress(thread_name)
            progress.success_count += 1
            progress.status_text = "提交成功"
            progress.last_update_ts = float(int(time.time()))

    def increment_thread_fail(self, thread_name: str) -> None:
        with self._lock:
            progress = self._progress(thread_name)
            progress.fail_count += 1
            progress.status_text = "失败重试"
            progress.last_update_ts = float(int(time.time()))

    def is_stopped(self) -> bool:
        return self._stop.is_set()

    def signal_stop(self) -> None:
        """Stop the run; later terminal-stop reasons are ignored."""
        with self._lock:
            self._terminal_claimed = True
        self._stop.set()

    def increment_success(self) -> None:
        with self._lock:
            self.cur_num += 1

    def increment_fail(self) -> None:
        with self._lock:
            self.cur_fail += 1

    def try_start_submission(self, target: int) -> bool:
        """Reserve a target slot; False when the target is already covered."""
        if target <= 0:
            return False
        with self._lock:
            if self.cur_num + self.in_flight >= target:
                return False
            self.in_flight += 1
            return True

    def abort_submission_reservation(self) -> None:
        with self._lock:
            if self.in_flight > 0:
                self.in_flight -= 1

    def complete_submission(self, success: bool) -> None:
        with self._lock:
            if self.in_flight > 0:
                self.in_flight -= 1
            if success:
                self.cur_num += 1
            else:
                self.cur_fail += 1

    def initialize_reverse_fill_runtime(self) -> None:
        """Queue every sample of the configured reverse-fill spec."""
        with self._lock:
            spec = self.config.reverse_fill_spec if self.config is not None else None
            if spec is None:
                self.reverse_fill_runtime = None
                return
            runtime = ReverseFillRuntime(spec=spec)
            for sample in spec.samples:
                runtime.samples_by_row_number[sample.data_row_number] = sample
                runtime.queued_row_numbers.append(sample.data_row_number)
            self.reverse_fill_runtime = runtime

    def has_reverse_fill_runtime(self) -> bool:
        with self._lock:
            return self.reverse_fill_runtime is not None

    def acquire_reverse_fill_sample(self, thread_name: str) -> AcquireResult:
        """Reserve the next queued sample for a worker, or keep its current one."""
        key = _thread_key(thread_name)
        with self._lock:
            runtime = self.reverse_fill_runtime
            if runtime is None:
                return AcquireResult(STATUS_DISABLED, "reverse_fill_disabled")
            existing = runtime.reserved_row_by_thread.get(key)
            if existing is not None:
                sample = runtime.samples_by_row_number.get(existing)
                if sample is not None:
                    return AcquireResult(STATUS_ACQUIRED, "already_reserved", sample)
                del runtime.reserved_row_by_thread[key]
            while runtime.queued_row_numbers:
                row_number = runtime.queued_row_numbers.popleft()
                sample = runtime.samples_by_row_number.get(row_number)
                if sample is None:
                    continue
                runtime.reserved_row_by_thread[key] = row_number
                return AcquireResult(STATUS_ACQUIRED, "reserved", sample)
            target = self.config.target_num if self.config is not None else 0
            if self._possible_total() < max(0, target):
                return AcquireResult(STATUS_EXHAUSTED, "reverse_fill_target_unreachable")
            return AcquireResult(STATUS_WAITING, "reverse_fill_waiting")

    def release_reverse_fill_sample(self, thread_name: str, requeue: bool) -> int | None:
        """Drop a worker's reservation, optionally putting the row back at the front."""
        key = _thread_key(thread_name)
        with self._lock:
            runtime = self.reverse_fill_runtime
            if runtime is None:
                return None
            row_number = runtime.reserved_row_by_thread.pop(key, None)
            if row_number is None:
                return None
            if (
                requeue
                and row_number not in runtime.committed_row_numbers
                and row_number not in runtime.discarded_row_numbers
            ):
                runtime.queued_row_numbers.appendleft(row_number)
            return row_number

    def commit_reverse_fill_sample(self, thread_name: str) -> int | None:
        """Mark a worker's reserved row as consumed."""
        key = _thread_key(thread_name)
        with self._lock:
            runtime = self.reverse_fill_runtime
            if runtime is None:
                return None
            row_number = runtime.reserved_row_by_thread.pop(key, None)
            if row_number is None:
                return None
            runtime.committed_row_numbers.add(row_number)
            runtime.failure_count_by_row.pop(row_number, None)
            return row_number

    def mark_reverse_fill_submission_failed(self, thread_name: str, max_retries: int) -> tuple[int | None, bool]:
        """Requeue a failed row, or discard it once retries run out; returns (row, discarded)."""
        key = _thread_key(thread_name)
        with self._lock:
            runtime = self.reverse_fill_runtime
            if runtime is None:
                return None, False
            row_number = runtime.reserved_row_by_thread.pop(key, None)
            if row_number is None:
                return None, False
            count = runtime.failure_count_by_row.get(row_number, 0) + 1
            runtime.failure_count_by_row[row_number] = count
            if count <= max(0, max_retries):
                runtime.queued_row_numbers.appendleft(row_number)
                return row_number, False
            runtime.discarded_row_numbers.add(row_number)
            return row_number, True

    def get_reverse_fill_answer(self, question_num: int, thread_name: str = "") -> ReverseFillAnswer | None:
        """Answer to a question in the sample reserved by a worker, if any."""
        key = _thread_key(thread_name)
        with self._lock:
            runtime = self.reverse_fill_runtime
            if runtime is None:
                return None
            row_number = runtime.reserved_row_by_thread.get(key)
            if row_number is None:
                return None
            sample = runtime.samples_by_row_number.get(row_number)
            if sample is None:
                return None
            return sample.answers.get(question_num)

    def is_reverse_fill_target_unreachable(self) -> bool:
        with self._lock:
            if self.reverse_fill_runtime is None or self.config is None or self.config.target_num <= 0:
                return False
            return self._possible_total() < self.config.target_num

    def _possible_total(self) -> int:
        runtime = self.reverse_fill_runtime
        if runtime is None:
            return self.cur_num
        return self.cur_num + len(runtime.queued_row_numbers) + len(runtime.reserved_row_by_thread)

    def snapshot_thread_progress(self) -> list[dict[str, Any]]:
        """Progress of every worker as plain dictionaries."""
        with self._lock:
            return [
                {
                    "thread_name": progress.thread_name,
                    "thread_index": progress.thread_index,
                    "success_count": progress.success_count,
                    "fail_count": progress.fail_count,
                    "step_current": progress.step_current,
                    "step_total": progress.step_total,
                    "status_text": progress.status_text,
                    "running": progress.running,
                    "last_update": progress.last_update_ts,
                }
                for progress in self.thread_progress.values()
                if progress is not None
            ]