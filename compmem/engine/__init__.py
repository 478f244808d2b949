"""Comparison memory evaluation: votes, group latches, output debounce and the threads that run them."""

from .aggregator import GroupLatch, aggregate, count_true
from .combinator import DebounceState, candidate_output, combine
from .rule_task import RuleEvaluator, TickResult
from .runner import ComparisonEngineRunner, EngineRunnerError
from .scheduler import RuleScheduler
from .snapshot import RuleSnapshot, compile_rule
from .votes import InputVote, evaluate_input
from .worker import RuleWorker

__all__ = [
    "ComparisonEngineRunner",
    "DebounceState",
    "EngineRunnerError",
    "GroupLatch",
    "InputVote",
    "RuleEvaluator",
    "RuleScheduler",
    "RuleSnapshot",
    "RuleWorker",
    "TickResult",
    "aggregate",
    "candidate_output",
    "combine",
    "compile_rule",
    "count_true",
    "evaluate_input",
]
