"""
Diagnostic Schemas

Results of the transaction load test and the query plan profiler.
"""

from typing import List, Optional

from pydantic import Field

from .base import BaseSchema, TimestampedSchema


class LoadTestOperation(BaseSchema):
    """One synthetic transaction of a load test"""

    index: int = Field(..., ge=0)
    success: bool
    duration_ms: int = Field(..., ge=0)
    retry_count: int = Field(default=0, ge=0)
    error: Optional[str] = None


class LoadTestSummary(TimestampedSchema):
    """Aggregate outcome of a load test"""

    company_id: str
    concurrency: int = Field(..., ge=1)
    success_count: int = Field(..., ge=0)
    error_count: int = Field(..., ge=0)
    average_time_ms: float = Field(..., ge=0)
    min_time_ms: int = Field(..., ge=0)
    max_time_ms: int = Field(..., ge=0)
    p95_time_ms: float = Field(..., ge=0)
    total_duration_ms: int = Field(..., ge=0)
    errors: List[str] = Field(default_factory=list, description="Distinct error messages")
    cleanup_succeeded: bool = True
    operations: List[LoadTestOperation] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        total = self.success_count + self.error_count
        return self.success_count / total if total else 0.0


class QueryPerformanceResult(BaseSchema):
    """Plan and timing of one profiled query"""

    test_name: str
    query_description: str
    execution_time_ms: int = Field(..., ge=0)
    rows_returned: int = Field(..., ge=0)
    plan_cost: float = Field(default=0.0, ge=0)
    index_used: bool
    query_plan: str = ""


class PerformanceReport(TimestampedSchema):
    """All query profiles of one run"""

    company_id: str
    dialect: str
    results: List[QueryPerformanceResult] = Field(default_factory=list)

    @property
    def queries_without_index(self) -> List[str]:
        return [result.test_name for result in self.results if not result.index_used]
