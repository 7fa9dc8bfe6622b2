"""
Application startup validation and initialization.

Performs configuration and connectivity checks before the service starts
accepting payouts.
"""

import logging
import sys
from typing import List, Tuple

import sqlalchemy as sa
from sqlalchemy import text

from core.config import settings
from core.database import engine

logger = logging.getLogger(__name__)

REQUIRED_TABLES = [
    "companies",
    "employees",
    "time_entries",
    "time_entry_breaks",
    "payroll_payments",
    "payroll_payment_time_entries",
]


def configure_logging():
    """Configure root logging from settings"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class StartupValidator:
    """Validates application startup requirements"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def check_database_connection(self) -> bool:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection successful")
            return True
        except sa.exc.SQLAlchemyError as e:
            self.errors.append(f"Database connection failed: {str(e)}")
            return False

    def check_gateway_config(self) -> bool:
        """Payouts need a merchant key and a webhook secret unless dry-run is on"""
        if settings.ARIFPAY_DRY_RUN:
            if settings.is_production:
                self.errors.append("ARIFPAY_DRY_RUN must not be enabled in production")
                return False
            self.warnings.append("ARIFPAY_DRY_RUN is enabled - payouts are simulated")
            return True

        if not settings.webhook_secret:
            message = "No webhook secret configured - payout callbacks will be rejected"
            if settings.is_production:
                self.errors.append(message)
                return False
            self.warnings.append(message)
        return True

    def check_required_tables(self) -> bool:
        try:
            existing_tables = sa.inspect(engine).get_table_names()
            missing_tables = [t for t in REQUIRED_TABLES if t not in existing_tables]
            if missing_tables:
                self.warnings.append(f"Missing database tables: {', '.join(missing_tables)}")
            return True
        except sa.exc.SQLAlchemyError as e:
            self.warnings.append(f"Could not check database tables: {str(e)}")
            return True

    def validate_all(self) -> Tuple[bool, List[str], List[str]]:
        """Run all validation checks"""
        checks = [
            ("Gateway Configuration", self.check_gateway_config),
            ("Database Connection", self.check_database_connection),
            ("Database Tables", self.check_required_tables),
        ]

        all_passed = True
        for check_name, check_func in checks:
            logger.info(f"Running check: {check_name}")
            if not check_func():
                all_passed = False

        return all_passed, self.errors, self.warnings


def run_startup_checks():
    """Run all startup validation checks"""
    logger.info(f"Starting payroll service (environment: {settings.ENVIRONMENT})")

    validator = StartupValidator()
    passed, errors, warnings = validator.validate_all()

    for warning in warnings:
        logger.warning(f"Startup warning: {warning}")
    for error in errors:
        logger.error(f"Startup error: {error}")

    if not passed and settings.is_production:
        logger.error("Cannot start in production with errors!")
        sys.exit(1)
    elif not passed:
        logger.warning("Starting in development mode despite errors")
    else:
        logger.info("All startup checks passed")

    return passed, warnings
