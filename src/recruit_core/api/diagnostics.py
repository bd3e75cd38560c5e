"""
Admin diagnostics API endpoints
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from ..database.transaction import TransactionService
from ..diagnostics.load_test import TransactionLoadTester
from ..diagnostics.query_profiler import QueryPlanProfiler
from ..exceptions import UnsupportedDialectError, ValidationException
from ..schemas.diagnostics import LoadTestSummary, PerformanceReport
from ..utils.config import DiagnosticsSettings, get_settings
from ..utils.logger import get_service_logger, log_exception

logger = get_service_logger("recruit-core.api.diagnostics")


# Request models
class LoadTestRequest(BaseModel):
    """Load test trigger"""

    company_id: str = Field(..., min_length=1, max_length=64)
    concurrency: Optional[int] = Field(
        default=None, ge=1, description="Concurrent transactions, configured default when omitted"
    )


class PerformanceTestRequest(BaseModel):
    """Query profiling trigger"""

    company_id: str = Field(..., min_length=1, max_length=64)


class DiagnosticsAPI:
    """
    Admin-only diagnostics endpoints

    Provides REST endpoints for:
    - Transaction load tests
    - Query plan profiling

    Every route requires the ``X-Admin-Token`` header. When diagnostics are
    disabled the routes answer 404 as if they did not exist.
    """

    def __init__(self, service: TransactionService, settings: Optional[DiagnosticsSettings] = None):
        self.service = service
        self.settings = settings or get_settings().diagnostics
        self.router = APIRouter(
            prefix="/internal/diagnostics",
            tags=["diagnostics"],
            dependencies=[Depends(self.verify_admin_token)],
        )
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup API routes"""
        self.router.add_api_route(
            "/load-test",
            self.run_load_test,
            methods=["POST"],
            response_model=LoadTestSummary,
        )
        self.router.add_api_route(
            "/performance",
            self.run_performance_tests,
            methods=["POST"],
            response_model=PerformanceReport,
        )

    async def verify_admin_token(
        self, x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")
    ) -> None:
        if not self.settings.enabled:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

        expected = self.settings.admin_token
        if (
            not expected
            or not x_admin_token
            or not secrets.compare_digest(x_admin_token.encode(), expected.encode())
        ):
            logger.warning("Rejected diagnostics request with invalid admin token")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin token")

    async def run_load_test(self, request: LoadTestRequest) -> LoadTestSummary:
        """Run a concurrent transaction load test"""
        concurrency = request.concurrency or self.settings.default_concurrency
        if concurrency > self.settings.max_concurrency:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"concurrency must not exceed {self.settings.max_concurrency}",
            )

        tester = TransactionLoadTester(self.service)
        try:
            return await tester.run_load_test(request.company_id, concurrency)
        except ValidationException as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
        except Exception as e:
            log_exception(logger, e, "Load test failed", {"company_id": request.company_id})
            raise HTTPException(status_code=500, detail=f"Load test failed: {e!s}")

    async def run_performance_tests(self, request: PerformanceTestRequest) -> PerformanceReport:
        """Profile the representative queries of a company"""
        try:
            profiler = QueryPlanProfiler(self.service)
        except UnsupportedDialectError as e:
            raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=e.message)

        try:
            return await profiler.run_performance_tests(request.company_id)
        except Exception as e:
            log_exception(logger, e, "Performance tests failed", {"company_id": request.company_id})
            raise HTTPException(status_code=500, detail=f"Performance tests failed: {e!s}")


def create_diagnostics_router(
    service: TransactionService, settings: Optional[DiagnosticsSettings] = None
) -> APIRouter:
    """Router to mount on an internal FastAPI application"""
    return DiagnosticsAPI(service, settings).router
