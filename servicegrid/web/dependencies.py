"""FastAPI dependency providers for repositories bound to the request's engine."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from servicegrid.audit.logger import AuditLogger
from servicegrid.storage.database import get_db_engine
from servicegrid.storage.repositories.billing import InvoiceRepository, QuoteRepository
from servicegrid.storage.repositories.customers import CustomerRepository
from servicegrid.storage.repositories.dashboard import DashboardRepository
from servicegrid.storage.repositories.jobs import JobRepository
from servicegrid.storage.repositories.tenancy import TenancyRepository


def tenancy_repo(engine: AsyncEngine = Depends(get_db_engine)) -> TenancyRepository:
    return TenancyRepository(engine)


def customer_repo(engine: AsyncEngine = Depends(get_db_engine)) -> CustomerRepository:
    return CustomerRepository(engine)


def job_repo(engine: AsyncEngine = Depends(get_db_engine)) -> JobRepository:
    return JobRepository(engine)


def quote_repo(engine: AsyncEngine = Depends(get_db_engine)) -> QuoteRepository:
    return QuoteRepository(engine)


def invoice_repo(engine: AsyncEngine = Depends(get_db_engine)) -> InvoiceRepository:
    return InvoiceRepository(engine)


def dashboard_repo(engine: AsyncEngine = Depends(get_db_engine)) -> DashboardRepository:
    return DashboardRepository(engine)


def audit_logger(engine: AsyncEngine = Depends(get_db_engine)) -> AuditLogger:
    return AuditLogger(engine)
