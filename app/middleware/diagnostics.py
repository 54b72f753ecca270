"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database and the stage catalog, then logs a summary banner.
"""

import logging
import sys

from flask import Flask

from app.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        # ── Python version ───────────────────────────────────────────
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = f"FAILED ({exc})"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        try:
            from sqlalchemy import inspect as sa_inspect
            tables = sa_inspect(db.engine).get_table_names()
            table_count = len(tables)
            if table_count == 0:
                issues.append("No tables found — run 'flask db upgrade'")
        except Exception as exc:
            table_count = "?"
            issues.append(f"Table inspection failed: {exc}")

        # ── Stage catalog ────────────────────────────────────────────
        from app.services.stage_catalog import all_stages
        stage_count = len(all_stages())

        auth_enabled = str(app.config.get("API_AUTH_ENABLED", "false")).lower() == "true"
        word_limit = app.config.get("PROGRESS_REPORT_MAX_WORDS")

        # ── Banner ───────────────────────────────────────────────────
        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Research Proposal Workflow Engine — Startup Diagnostics    ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {db_type} ({db_status}){' ' * max(0, 46 - len(db_type) - len(str(db_status)) - 3)}║
║  Tables      : {str(table_count):<46s}║
║  Stages      : {str(stage_count):<46s}║
║  Word limit  : {str(word_limit):<46s}║
║  Auth        : {'ENABLED' if auth_enabled else 'DISABLED':<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
