"""API routes."""

from tms_financials.api.routes.financials import router as financials_router
from tms_financials.api.routes.health import router as health_router
from tms_financials.api.routes.invoices import router as invoices_router
from tms_financials.api.routes.timesheets import router as timesheets_router

__all__ = ["financials_router", "health_router", "invoices_router", "timesheets_router"]
