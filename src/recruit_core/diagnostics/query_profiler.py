"""
Query plan profiler

Executes representative read queries next to the backend's plan statement,
times them and flags whether an index access path was chosen. Used during
development to catch index regressions.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.transaction import TransactionService
from ..exceptions import UnsupportedDialectError
from ..schemas.diagnostics import PerformanceReport, QueryPerformanceResult
from ..utils.helpers import elapsed_ms, monotonic_ms, utc_now
from ..utils.logger import get_service_logger, log_exception

logger = get_service_logger("recruit-core.diagnostics.profiler")

PLAN_PREFIXES = {
    "postgresql": "EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) ",
    "sqlite": "EXPLAIN QUERY PLAN ",
    "mysql": "EXPLAIN FORMAT=JSON ",
    "mariadb": "EXPLAIN FORMAT=JSON ",
}

INDEX_MARKERS = {
    "postgresql": ("Index Scan", "Index Only Scan", "Bitmap Index Scan"),
    "sqlite": ("USING INDEX", "USING COVERING INDEX", "USING INTEGER PRIMARY KEY"),
    "mysql": ('"key":',),
    "mariadb": ('"key":',),
}


@dataclass
class ProfiledQuery:
    """A read query worth watching"""

    name: str
    description: str
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryPlan:
    text: str = ""
    cost: float = 0.0


def company_queries(company_id: str) -> list[ProfiledQuery]:
    return [
        ProfiledQuery(
            name="Projects by Company",
            description="Active projects of a company with their candidate count",
            sql=(
                "SELECT p.id, p.name, p.status, p.created_at, COUNT(c.id) AS candidate_count "
                "FROM projects p LEFT JOIN candidates c ON p.id = c.project_id "
                "WHERE p.company_id = :company_id AND p.status = 'active' "
                "GROUP BY p.id, p.name, p.status, p.created_at "
                "ORDER BY p.created_at DESC LIMIT 20"
            ),
            params={"company_id": company_id},
        ),
        ProfiledQuery(
            name="Users by Company Role",
            description="Active HR and admin users of a company",
            sql=(
                "SELECT u.id, u.email, u.role FROM users u "
                "WHERE u.company_id = :company_id AND u.role IN ('hr', 'admin') "
                "AND u.is_active = true ORDER BY u.created_at DESC"
            ),
            params={"company_id": company_id},
        ),
    ]


def project_queries(project_id: Any) -> list[ProfiledQuery]:
    return [
        ProfiledQuery(
            name="Candidates by Project Status",
            description="Analyzed candidates of a project with their score",
            sql=(
                "SELECT c.id, c.name, c.score, c.ranking, a.score AS analysis_score "
                "FROM candidates c LEFT JOIN analysis a ON c.id = a.candidate_id "
                "WHERE c.project_id = :project_id AND c.status = 'analyzed' "
                "ORDER BY c.score DESC, c.ranking ASC LIMIT 50"
            ),
            params={"project_id": project_id},
        ),
        ProfiledQuery(
            name="Analyses by Project",
            description="Analyses of a project with the candidate name, newest first",
            sql=(
                "SELECT a.id, a.score, a.created_at, c.name AS candidate_name "
                "FROM analysis a INNER JOIN candidates c ON a.candidate_id = c.id "
                "WHERE a.project_id = :project_id ORDER BY a.created_at DESC LIMIT 100"
            ),
            params={"project_id": project_id},
        ),
        ProfiledQuery(
            name="Candidate Ranking",
            description="Top 20 candidates of a project by ranking and score",
            sql=(
                "SELECT c.id, c.name, c.score, c.ranking, c.status FROM candidates c "
                "WHERE c.project_id = :project_id AND c.status = 'analyzed' "
                "ORDER BY c.ranking ASC, c.score DESC LIMIT 20"
            ),
            params={"project_id": project_id},
        ),
    ]


def _load_json(value: Any) -> Any:
    if isinstance(value, (bytes, str)):
        return json.loads(value)
    return value


class QueryPlanProfiler:
    """Runs profiled queries through the transaction service"""

    def __init__(self, service: TransactionService):
        self.service = service
        self.dialect = service.provider.dialect_name
        if self.dialect not in PLAN_PREFIXES:
            raise UnsupportedDialectError(self.dialect, "query plan profiling")

    def _parse_plan(self, rows: list[Any]) -> QueryPlan:
        if not rows:
            return QueryPlan()

        if self.dialect == "postgresql":
            document = _load_json(rows[0][0])
            plan = document[0] if isinstance(document, list) else document
            return QueryPlan(
                text=json.dumps(plan, indent=2),
                cost=float(plan.get("Plan", {}).get("Total Cost", 0) or 0),
            )

        if self.dialect == "sqlite":
            # rows are (id, parent, notused, detail)
            return QueryPlan(text="\n".join(str(row[-1]) for row in rows))

        document = _load_json(rows[0][0])
        cost = document.get("query_block", {}).get("cost_info", {}).get("query_cost", 0)
        return QueryPlan(text=json.dumps(document, indent=2), cost=float(cost or 0))

    async def _fetch_plan(self, query: ProfiledQuery) -> QueryPlan:
        async def work(session: AsyncSession) -> list[Any]:
            result = await session.execute(
                text(PLAN_PREFIXES[self.dialect] + query.sql), query.params
            )
            return list(result.all())

        try:
            rows = await self.service.execute(work)
        except Exception as error:
            log_exception(logger, error, f"Query plan unavailable for '{query.name}'")
            return QueryPlan()
        return self._parse_plan(rows)

    async def _run_query(self, query: ProfiledQuery) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(text(query.sql), query.params)
            return len(result.all())

        return await self.service.execute(work)

    def uses_index(self, plan_text: str) -> bool:
        return any(marker in plan_text for marker in INDEX_MARKERS[self.dialect])

    async def profile_query(self, query: ProfiledQuery) -> QueryPerformanceResult:
        """Run the plan statement and the query side by side"""
        start = monotonic_ms()
        plan, rows_returned = await asyncio.gather(
            self._fetch_plan(query), self._run_query(query)
        )
        execution_time = elapsed_ms(start)

        return QueryPerformanceResult(
            test_name=query.name,
            query_description=query.description,
            execution_time_ms=execution_time,
            rows_returned=rows_returned,
            plan_cost=plan.cost,
            index_used=self.uses_index(plan.text),
            query_plan=plan.text,
        )

    async def _first_project_id(self, company_id: str) -> Optional[Any]:
        async def work(session: AsyncSession) -> Optional[Any]:
            result = await session.execute(
                text("SELECT id FROM projects WHERE company_id = :company_id LIMIT 1"),
                {"company_id": company_id},
            )
            return result.scalar()

        return await self.service.execute(work)

    async def run_performance_tests(self, company_id: str) -> PerformanceReport:
        """
        Profile the representative queries of one company

        Project-scoped queries run against the company's first project and are
        skipped when it has none.
        """
        logger.info("Starting performance tests", extra={"company_id": company_id})

        queries = company_queries(company_id)
        project_id = await self._first_project_id(company_id)
        if project_id is not None:
            queries.extend(project_queries(project_id))

        results = [await self.profile_query(query) for query in queries]

        for result in results:
            status = "with index" if result.index_used else "no index"
            logger.info(f"{result.test_name}: {result.execution_time_ms}ms ({status})")

        return PerformanceReport(
            generated_at=utc_now(),
            company_id=company_id,
            dialect=self.dialect,
            results=results,
        )
