"""Pre-generated answers that give a group of scale items a target reliability."""

from __future__ import annotations

import math
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

DEFAULT_TARGET_ALPHA = 0.85

LEFT = "left"
RIGHT = "right"
CENTER = "center"


def choice_key(question_index: int, row_index: int | None = None) -> str:
    """Key under which a question (or one matrix row) stores its planned choice."""
    if row_index is not None:
        return f"q:{question_index}:{row_index}"
    return f"q:{question_index}"


@dataclass
class PsychometricItem:
    """One scored item of a dimension: a single question or a matrix row."""

    question_index: int
    option_count: int
    kind: str = "single"
    row_index: int | None = None
    bias: str = CENTER
    is_reversed: bool = False
    score_by_choice: list[float] = field(default_factory=list)
    target_prob: list[float] = field(default_factory=list)

    @property
    def key(self) -> str:
        return choice_key(self.question_index, self.row_index)


@dataclass
class PsychometricPlan:
    """Choices drawn for all items of one dimension from one latent trait value."""

    items: list[PsychometricItem]
    theta: float
    sigma_e: float
    choices: dict[str, int] = field(default_factory=dict)

    def get_choice(self, question_index: int, row_index: int | None = None) -> int | None:
        return self.choices.get(choice_key(question_index, row_index))


@dataclass
class DimensionPsychometricPlan:
    """Plans for several dimensions, looked up by question."""

    plans: dict[str, PsychometricPlan] = field(default_factory=dict)

    def get_choice(self, question_index: int, row_index: int | None = None) -> int | None:
        for plan in self.plans.values():
            choice = plan.get_choice(question_index, row_index)
            if choice is not None:
                return choice
        return None


@dataclass
class DimensionOrientation:
    """Direction each item leans, and the items that run against the dimension."""

    item_directions: dict[str, str] = field(default_factory=dict)
    reversed_keys: set[str] = field(default_factory=set)


def build_psychometric_plan(
    items: Sequence[PsychometricItem], target_alpha: float = DEFAULT_TARGET_ALPHA
) -> PsychometricPlan | None:
    """Draw one answer per item; needs at least two items."""
    if len(items) < 2:
        return None
    if target_alpha <= 0:
        target_alpha = DEFAULT_TARGET_ALPHA

    rho = _rho_from_alpha(target_alpha, len(items))
    sigma_e = _sigma_e_from_rho(rho)
    theta = random.gauss(0.0, 1.0)

    orientation = infer_dimension_orientation(items)
    choices: dict[str, int] = {}
    for item in items:
        key = item.key
        direction = orientation.item_directions.get(key) or item.bias
        reversed_item = key in orientation.reversed_keys or item.is_reversed
        score = _generate_answer(theta, item.option_count, direction, sigma_e, reversed_item)
        choices[key] = _map_score_to_choice(score, item)

    return PsychometricPlan(items=list(items), theta=theta, sigma_e=sigma_e, choices=choices)


def build_dimension_psychometric_plan(
    grouped_items: Mapping[str, Sequence[PsychometricItem]],
    target_alpha: float = DEFAULT_TARGET_ALPHA,
) -> DimensionPsychometricPlan | None:
    """Build a plan for every dimension with at least two items."""
    plans: dict[str, PsychometricPlan] = {}
    for dimension, items in grouped_items.items():
        if len(items) < 2:
            continue
        plan = build_psychometric_plan(items, target_alpha)
        if plan is not None:
            plans[dimension] = plan
    if not plans:
        return None
    return DimensionPsychometricPlan(plans=plans)


def infer_dimension_orientation(items: Sequence[PsychometricItem]) -> DimensionOrientation:
    """Find the dominant direction of a dimension and mark items leaning the other way."""
    result = DimensionOrientation()
    strengths: dict[str, float] = {}
    left_strength = 0.0
    right_strength = 0.0
    for item in items:
        key = item.key
        direction, strength = _item_direction(item)
        result.item_directions[key] = direction
        strengths[key] = strength
        if direction == LEFT:
            left_strength += strength
        elif direction == RIGHT:
            right_strength += strength

    anchor = CENTER
    anchor_strength = left_strength
    weaker_strength = right_strength
    if right_strength > left_strength:
        anchor = RIGHT
        anchor_strength = right_strength
        weaker_strength = left_strength
    elif left_strength > right_strength:
        anchor = LEFT

    ambiguous = anchor == CENTER or anchor_strength < 0.2 or anchor_strength <= weaker_strength * 1.15
    if ambiguous:
        return result

    for key, direction in result.item_directions.items():
        if strengths[key] <= 0:
            continue
        if direction in (LEFT, RIGHT) and direction != anchor:
            result.reversed_keys.add(key)
    return result


def _item_direction(item: PsychometricItem) -> tuple[str, float]:
    probs = _normalize_probabilities(item.target_prob, item.option_count)
    if not probs:
        probs = _bias_target_probabilities(item.option_count, item.bias)
    denom = float(max(item.option_count - 1, 1))
    weighted = sum(index * value for index, value in enumerate(probs))
    mean = max(0.0, min(1.0, weighted / denom))
    strength = abs(mean - 0.5)
    if mean <= 0.4:
        return LEFT, strength
    if mean >= 0.6:
        return RIGHT, strength
    return CENTER, strength


def _normalize_probabilities(values: Sequence[float] | None, option_count: int) -> list[float]:
    if option_count <= 0:
        return []
    result = [0.0] * option_count
    for index, raw in enumerate(list(values or [])[:option_count]):
        value = float(raw)
        if math.isnan(value) or math.isinf(value) or value < 0:
            value = 0.0
        result[index] = value
    total = sum(result)
    if total <= 0:
        return []
    return [value / total for value in result]


def _bias_target_probabilities(option_count: int, bias: str) -> list[float]:
    if option_count <= 1:
        option_count = 2
    if option_count == 2:
        if bias == LEFT:
            return [0.75, 0.25]
        if bias == RIGHT:
            return [0.25, 0.75]
        return [0.5, 0.5]

    center = (option_count - 1) / 2
    power = 3.0 if bias == CENTER else 8.0
    raw = []
    for index in range(option_count):
        if bias == LEFT:
            linear = 1.0 - index / (option_count - 1)
        elif bias == RIGHT:
            linear = index / (option_count - 1)
        else:
            linear = 1.0 - abs(index - center) / max(center, 1.0)
        raw.append(max(linear, 0.0) ** power)
    return _normalize_probabilities(raw, option_count)


def _rho_from_alpha(alpha: float, k: int) -> float:
    denom = k - alpha * (k - 1)
    if denom <= 0:
        return 0.5
    return alpha / denom


def _sigma_e_from_rho(rho: float) -> float:
    if rho <= 0:
        return 1.0
    value = 1.0 / rho - 1.0
    return math.sqrt(value) if value >= 0 else math.nan


def _generate_answer(theta: float, option_count: int, bias: str, sigma_e: float, is_reversed: bool) -> int:
    shift = {LEFT: -0.5, RIGHT: 0.5}.get(bias, 0.0)
    effective_theta = -theta if is_reversed else theta
    z = effective_theta + shift + sigma_e * random.gauss(0.0, 1.0)
    return _z_to_category(z, option_count)


def _map_score_to_choice(score: int, item: PsychometricItem) -> int:
    scores = item.score_by_choice
    if not scores:
        return score
    for choice, target in enumerate(scores):
        if int(target) == score:
            return choice
    best_index = 0
    best_diff = 999
    for choice, target in enumerate(scores):
        diff = abs(int(target) - score)
        if diff < best_diff:
            best_diff = diff
            best_index = choice
    return best_index


def _z_to_category(z: float, option_count: int) -> int:
    if option_count <= 1:
        return 0
    phi = 0.5 * (1 + math.erf(z / math.sqrt(2)))
    if math.isnan(phi):
        return 0
    index = math.floor(phi * option_count)
    return max(0, min(option_count - 1, index))