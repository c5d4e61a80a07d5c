"""
kunde_ingestion -- staging-based bulk customer import.

Provides upload parsing (CSV, XLSX), cleaning, column mapping with reusable
templates, row validation with duplicate detection, and commit to the kunde
table with audit trail and rollback.

Architecture:
    kunde_ingestion/ is a top-level package.  Nothing in kunde_kernel/ or
    kunde_config/ imports from it.  Pure stages (adapters, cleaning,
    detection, mapping, validation) never touch the session; services/ owns
    all persistence.
"""
