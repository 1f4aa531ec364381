# surveycore

`surveycore` holds the decision-making parts of an automated survey filler:
conditional rules that keep the answers of one submission consistent,
steering of the overall answer distribution towards target ratios,
latent-trait answer plans that give a group of scale questions a target
reliability, and "reverse fill" — replaying real answers taken from an
exported CSV or Excel answer sheet. It also keeps the thread-safe runtime
state of a running job: success and failure counters, per-worker progress,
a stop signal and the queue of reverse-fill samples handed out to workers.

It has no runtime dependencies beyond the standard library; Excel files are
read with `zipfile` and `xml.etree`.

## Modules

| Module | Purpose |
| --- | --- |
| `surveycore.records` | Shared data types: `QuestionMeta`, `ExecutionConfig`, `ReverseFillAnswer`, `ReverseFillSampleRow`, `ReverseFillIssue`, `ReverseFillQuestionPlan`, `ReverseFillSpec`, and the enums `AnswerKind`, `ReverseFillFormat`, `ReverseFillStatus`. |
| `surveycore.consistency` | `AnswerRule` and `ConsistencyContext`. |
| `surveycore.distribution` | `DistributionTracker` and `resolve_distribution_probabilities`. |
| `surveycore.psychometric` | `PsychometricItem`, `PsychometricPlan`, `DimensionPsychometricPlan`, `build_psychometric_plan`, `build_dimension_psychometric_plan`, `infer_dimension_orientation`. |
| `surveycore.rf_source` | Reading exports: `load_source`, `build_export`, `detect_format`, `parse_choice_answer`, `label_variants` and helpers; errors raise `SourceError`. |
| `surveycore.reversefill` | `ReverseFillSettings`, `build_spec`, `infer_question_type`, `format_blocking_message`; errors raise `ReverseFillError`. |
| `surveycore.state` | `ExecutionState`, `ThreadProgress`, `AcquireResult`, `ReverseFillRuntime`. |

## Consistency rules

A rule says: if question 1 had option 0 selected, question 2 must not select
option 1.

```python
from surveycore.consistency import AnswerRule, ConsistencyContext

rule = AnswerRule(
    condition_question_num=1,
    condition_mode="selected",
    condition_option_indices=[0],
    target_question_num=2,
    action_mode="must_not_select",
    target_option_indices=[1],
)
ctx = ConsistencyContext([rule])
ctx.record_answer(1, 0)
ctx.apply_single_consistency([0.25, 0.25, 0.25, 0.25], 2)
# -> [0.25, 0.0, 0.25, 0.25]
```

- `apply_single_consistency` applies only the last triggered rule that
  targets the question and involves no matrix rows.
- `apply_matrix_row_consistency(probs, question_num, row_index)` applies every
  triggered rule whose `target_row_index` matches, in order; answers for
  matrix rows are recorded with `record_matrix_answer`.
- `get_multiple_constraint(question_num, option_count)` returns
  `(must_select, must_not_select)` lists for a multiple-choice question;
  record its answers with `record_answers`.

A `must_select` rule sets the target options to 1 and all others to 0. If a
rule would leave every weight at zero, the original weights are returned.

## Steering the distribution

```python
from surveycore.distribution import DistributionTracker, resolve_distribution_probabilities

tracker = DistributionTracker()
tracker.record_choice(1, 0, 3, None)
total, counts = tracker.snapshot(1, 3, None)   # (1, [1, 0, 0])

weights = resolve_distribution_probabilities([0.5, 0.3, 0.2], 3, tracker, 1, None)
```

The target is clipped at zero and normalised (all-zero targets become
uniform). Once twelve answers have been recorded for the question (or matrix
row), each option is multiplied by `exp(4.2 * gap)`, where the gap between
target and observed ratio is capped at ±0.42 and the factor at 0.45–2.2,
and the result is normalised again.

## Psychometric plans

Questions that measure the same construct are answered from one shared latent
trait, with noise chosen so the items reach a target Cronbach's alpha
(0.85 when the given value is not positive):

```python
from surveycore.psychometric import PsychometricItem, build_psychometric_plan

items = [
    PsychometricItem(question_index=n, option_count=5, kind="single", bias="center")
    for n in (1, 2, 3)
]
plan = build_psychometric_plan(items, 0.85)
plan.get_choice(1, None)   # a pre-drawn option index in 0..4
```

A plan needs at least two items; otherwise `None` is returned.
`build_dimension_psychometric_plan({"dim": items, ...}, alpha)` builds one
plan per dimension and looks choices up across all of them.
`infer_dimension_orientation` works out which way each item leans from its
`target_prob` (or its `bias`) and marks items leaning against the dominant
direction as reversed. When `score_by_choice` is given, drawn scores are
mapped back to the option carrying that score, or the closest one.

## Reverse fill

`build_spec` reads a CSV or Excel export whose header cells look like
`1、Question title`, matches columns to questions and collects one
`ReverseFillSampleRow` per data row:

```python
from surveycore.records import QuestionMeta
from surveycore.reversefill import ReverseFillError, ReverseFillSettings, build_spec

# samples.csv:
# 1、Color,2、Comment
# B,hello
# 1,world
settings = ReverseFillSettings(
    enabled=True,
    source_path="samples.csv",
    format="wjx_text",
    start_row=1,
    target=2,
    survey_provider="wjx",
    configured_question_nums={1, 2},
)
questions = [
    QuestionMeta(num=1, title="Color", type_code="3", options=2,
                 option_texts=["A", "B"], provider="wjx"),
    QuestionMeta(num=2, title="Comment", type_code="8", is_text_like=True, provider="wjx"),
]
try:
    spec = build_spec(settings, questions)
except ReverseFillError as exc:
    print(exc)          # readable summary of the blocking issues
    print(exc.spec)     # the spec, when one was built
else:
    spec.samples[0].answers[1].choice_index   # 1
    spec.samples[0].answers[2].text_value     # "hello"
```

- `build_spec` returns `None` when `settings.enabled` is false. Only the
  `wjx` provider is accepted.
- Supported question types are single choice, dropdown, scale, score, text,
  multi-blank text and matrix. Others, and location questions, are reported as
  issues.
- The format is one of `wjx_sequence`, `wjx_score`, `wjx_text`, or `auto`,
  which detects it from the sheet. Choice cells are matched to option texts
  (ignoring numbering prefixes, full-width punctuation and whitespace) or
  read as 1-based option numbers.
- A question that cannot be replayed is a warning when its number is in
  `configured_question_nums` (the run falls back to the normal configuration)
  and a blocking issue otherwise. Too few samples for the target is always
  blocking.

Of Excel workbooks, the first worksheet is read (`.xlsx`, `.xlsm`, `.xltx`,
`.xltm`). `rf_source.load_source` and `rf_source.build_export` can be used
directly to inspect a file's question columns and rows.

## Run state

```python
from surveycore.records import ExecutionConfig
from surveycore.state import ExecutionState

state = ExecutionState(ExecutionConfig(target_num=2, reverse_fill_spec=spec))
state.ensure_worker_threads(2, "Worker")        # Worker-1, Worker-2
state.initialize_reverse_fill_runtime()

result = state.acquire_reverse_fill_sample("Worker-1")
if result.acquired:
    answer = state.get_reverse_fill_answer(1, "Worker-1")
    # ... submit ...
    state.commit_reverse_fill_sample("Worker-1")
    state.complete_submission(True)
```

- `acquire_reverse_fill_sample` returns an `AcquireResult` with status
  `acquired`, `waiting`, `exhausted` (the remaining samples cannot reach the
  target) or `disabled`.
- `release_reverse_fill_sample(name, requeue)` gives a reservation back;
  `mark_reverse_fill_submission_failed(name, max_retries)` requeues the row
  at the front until its retries run out, then discards it and returns
  `(row, True)`.
- `try_start_submission(target)`, `abort_submission_reservation()` and
  `complete_submission(success)` keep in-flight submissions from overshooting
  the target.
- `signal_stop()` / `is_stopped()` carry the stop signal;
  `mark_terminal_stop` records the first stop reason only, and none after a
  stop signal.
- `snapshot()` returns a detached copy of counters and progress;
  `snapshot_thread_progress()` returns worker progress as dictionaries.

All `ExecutionState`, `ConsistencyContext` and `DistributionTracker` methods
are safe to call from several threads.

## What this package does not do

- It does not draw random options itself: it produces adjusted weights,
  constraints and pre-drawn psychometric choices, and the caller picks from
  them.
- It does not write text answers (no AI-generated text, random names, phone
  numbers or similar).
- It does not fetch or parse surveys, submit answers, manage proxies or run
  workers; `ExecutionState` only records what a runner reports.
- It does not persist tasks or logs; state lives in memory.
- It has no command-line interface or server.