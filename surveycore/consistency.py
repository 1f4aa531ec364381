"""Conditional answer rules that keep answers consistent across questions."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

MODE_SELECTED = "selected"
MODE_NOT_SELECTED = "not_selected"
ACTION_MUST_SELECT = "must_select"
ACTION_MUST_NOT_SELECT = "must_not_select"


@dataclass
class AnswerRule:
    """If a condition question was (not) answered a certain way, constrain a target question."""

    condition_question_num: int = 0
    condition_mode: str = MODE_SELECTED
    condition_option_indices: list[int] = field(default_factory=list)
    target_question_num: int = 0
    action_mode: str = ACTION_MUST_NOT_SELECT
    target_option_indices: list[int] = field(default_factory=list)
    condition_row_index: int | None = None
    target_row_index: int | None = None


def _matches_condition(answered: list[int], condition_indices: list[int], mode: str) -> bool:
    selected = any(value in condition_indices for value in answered)
    return selected if mode == MODE_SELECTED else not selected


def _apply_rule(probabilities: list[float], rule: AnswerRule) -> list[float]:
    size = len(probabilities)
    if rule.action_mode == ACTION_MUST_NOT_SELECT:
        result = list(probabilities)
        for idx in rule.target_option_indices:
            if 0 <= idx < size:
                result[idx] = 0.0
    elif rule.action_mode == ACTION_MUST_SELECT:
        result = [0.0] * size
        for idx in rule.target_option_indices:
            if 0 <= idx < size:
                result[idx] = 1.0
    else:
        result = list(probabilities)
    if all(value == 0 for value in result):
        return probabilities
    return result


class ConsistencyContext:
    """Holds the rules and the answers given so far; safe to share between threads."""

    def __init__(self, rules: list[AnswerRule] | None = None) -> None:
        self.rules = list(rules or [])
        self._answered: dict[int, list[int]] = {}
        self._answered_rows: dict[tuple[int, int], list[int]] = {}
        self._lock = threading.RLock()

    def record_answer(self, question_num: int, option_index: int) -> None:
        with self._lock:
            self._answered[question_num] = [option_index]

    def record_answers(self, question_num: int, option_indices: list[int]) -> None:
        with self._lock:
            self._answered[question_num] = list(option_indices)

    def record_matrix_answer(self, question_num: int, row_index: int, option_index: int) -> None:
        with self._lock:
            self._answered_rows[(question_num, row_index)] = [option_index]

    def apply_single_consistency(self, probabilities: list[float], question_num: int) -> list[float]:
        """Apply the last triggered non-matrix rule targeting the question."""
        with self._lock:
            last = None
            for rule in self.rules:
                if rule.target_question_num != question_num:
                    continue
                if rule.condition_row_index is not None or rule.target_row_index is not None:
                    continue
                if self._is_triggered(rule):
                    last = rule
            if last is None:
                return probabilities
            return _apply_rule(probabilities, last)

    def apply_matrix_row_consistency(
        self, probabilities: list[float], question_num: int, row_index: int
    ) -> list[float]:
        """Apply every triggered rule targeting this matrix row, in order."""
        with self._lock:
            for rule in self.rules:
                if rule.target_question_num != question_num or rule.target_row_index != row_index:
                    continue
                if self._is_triggered(rule):
                    probabilities = _apply_rule(probabilities, rule)
            return probabilities

    def get_multiple_constraint(self, question_num: int, option_count: int) -> tuple[list[int], list[int]]:
        """Return (must_select, must_not_select) option indices for a multiple-choice question."""
        must_select: list[int] = []
        must_not_select: list[int] = []
        with self._lock:
            for rule in self.rules:
                if rule.target_question_num != question_num or not self._is_triggered(rule):
                    continue
                if rule.action_mode == ACTION_MUST_SELECT:
                    must_select.extend(rule.target_option_indices)
                elif rule.action_mode == ACTION_MUST_NOT_SELECT:
                    must_not_select.extend(rule.target_option_indices)
        return must_select, must_not_select

    def _is_triggered(self, rule: AnswerRule) -> bool:
        if rule.condition_row_index is not None:
            answered = self._answered_rows.get((rule.condition_question_num, rule.condition_row_index))
        else:
            answered = self._answered.get(rule.condition_question_num)
        if answered is None:
            return False
        return _matches_condition(answered, rule.condition_option_indices, rule.condition_mode)