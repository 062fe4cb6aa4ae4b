"""
FastAPI Dependencies - Database handle and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends

from vivebien_admin.db.session import Database, get_database
from vivebien_admin.services.reports import ReportService


def get_report_service(database: Database = Depends(get_database)) -> ReportService:
    """Report service bound to the process-wide database handle."""
    return ReportService(database)
