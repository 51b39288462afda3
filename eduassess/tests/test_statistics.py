"""
Tests for the statistics aggregator.
"""

from eduassess.assessments.models import Attempt, AttemptStatus, TestDefinition
from eduassess.assessments.statistics import StatisticsAggregator


def attempt(status, score=0.0, percentage=None, number=1):
    return Attempt(
        test_id="t1", student_id=f"s{number}", attempt_number=1,
        status=status, total_score=score, percentage=percentage,
    )


def test_no_attempts_leaves_metrics_undefined():
    test = TestDefinition(title="Quiz", teacher_id="t", total_marks=10, passing_marks=5)
    stats = StatisticsAggregator.compute(test, [])
    assert stats.total_attempts == 0
    assert stats.avg_score is None
    assert stats.pass_rate is None


def test_only_evaluated_attempts_drive_scores():
    test = TestDefinition(title="Quiz", teacher_id="t", total_marks=10, passing_marks=5)
    stats = StatisticsAggregator.compute(test, [
        attempt(AttemptStatus.EVALUATED, 10.0, 100.0, 1),
        attempt(AttemptStatus.EVALUATED, 3.0, 30.0, 2),
        attempt(AttemptStatus.SUBMITTED, 0.0, 0.0, 3),
        attempt(AttemptStatus.IN_PROGRESS, number=4),
    ])
    assert stats.total_attempts == 3
    assert stats.evaluated_attempts == 2
    assert stats.avg_score == 65.0
    assert stats.pass_rate == 50.0


def test_pass_rate_needs_passing_marks():
    test = TestDefinition(title="Quiz", teacher_id="t", total_marks=10)
    stats = StatisticsAggregator.compute(test, [attempt(AttemptStatus.EVALUATED, 8.0, 80.0)])
    assert stats.avg_score == 80.0
    assert stats.pass_rate is None


def test_results_are_rounded():
    test = TestDefinition(title="Quiz", teacher_id="t", total_marks=3, passing_marks=2)
    stats = StatisticsAggregator.compute(test, [
        attempt(AttemptStatus.EVALUATED, 2.0, 66.67, 1),
        attempt(AttemptStatus.EVALUATED, 1.0, 33.33, 2),
        attempt(AttemptStatus.EVALUATED, 1.0, 33.33, 3),
    ])
    assert stats.avg_score == 44.44
    assert stats.pass_rate == 33.33
    assert stats.to_dict()["evaluated_attempts"] == 3


def test_recomputation_is_deterministic():
    test = TestDefinition(title="Quiz", teacher_id="t", total_marks=10, passing_marks=5)
    attempts = [
        attempt(AttemptStatus.EVALUATED, 7.0, 70.0, 1),
        attempt(AttemptStatus.EVALUATED, 4.0, 40.0, 2),
        attempt(AttemptStatus.SUBMITTED, 2.0, 20.0, 3),
    ]
    first = StatisticsAggregator.compute(test, attempts)
    second = StatisticsAggregator.compute(test, list(reversed(attempts)))
    assert first == second
    assert first.to_dict() == {"total_attempts": 3, "evaluated_attempts": 2, "avg_score": 55.0, "pass_rate": 50.0}
