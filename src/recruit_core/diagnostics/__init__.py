"""
Diagnostics Package

Load testing and query plan profiling against a real database.
"""

from .load_test import TEST_PROJECT_PREFIX, TransactionLoadTester
from .query_profiler import ProfiledQuery, QueryPlanProfiler, company_queries, project_queries
from .tables import analysis, candidates, metadata, projects, users

__all__ = [
    "TEST_PROJECT_PREFIX",
    "TransactionLoadTester",
    "ProfiledQuery",
    "QueryPlanProfiler",
    "company_queries",
    "project_queries",
    # Tables
    "metadata",
    "projects",
    "candidates",
    "users",
    "analysis",
]
