"""
Statistics Aggregator

Derives test-level metrics from the attempt set of a test. The numbers
cached on a test definition are always reproducible from here.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from eduassess.assessments.models import Attempt, AttemptStatus, TestDefinition


@dataclass(frozen=True)
class TestStatistics:
    """Aggregate metrics of one test. Undefined metrics are None."""

    __test__ = False

    total_attempts: int = 0
    evaluated_attempts: int = 0
    avg_score: Optional[float] = None
    pass_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "evaluated_attempts": self.evaluated_attempts,
            "avg_score": self.avg_score,
            "pass_rate": self.pass_rate,
        }


class StatisticsAggregator:
    """Full recomputation of test statistics from attempts."""

    @staticmethod
    def compute(test: TestDefinition, attempts: Iterable[Attempt]) -> TestStatistics:
        """
        Compute statistics for ``test``.

        Args:
            test: The test definition (for ``passing_marks``)
            attempts: Every attempt of the test, in any status

        Returns:
            total_attempts counts submitted and evaluated attempts. avg_score is
            the mean percentage of evaluated attempts. pass_rate is the share of
            evaluated attempts reaching passing_marks; it is None when no passing
            mark is set.
        """
        completed = [a for a in attempts if a.is_completed]
        evaluated = [a for a in completed if a.status == AttemptStatus.EVALUATED]

        percentages = [a.percentage for a in evaluated if a.percentage is not None]
        avg_score = round(sum(percentages) / len(percentages), 2) if percentages else None

        pass_rate = None
        if test.passing_marks is not None and evaluated:
            passed = sum(1 for a in evaluated if a.total_score >= test.passing_marks)
            pass_rate = round(passed / len(evaluated) * 100, 2)

        return TestStatistics(
            total_attempts=len(completed),
            evaluated_attempts=len(evaluated),
            avg_score=avg_score,
            pass_rate=pass_rate,
        )
