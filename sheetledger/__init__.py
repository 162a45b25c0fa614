"""SheetLedger: expense tracking service that keeps its data in Google Sheets.

The relational database only caches identifiers (users, OAuth tokens and the
spreadsheet/tab IDs created for them); expenses and categories live in the
user's own spreadsheets.
"""

from __future__ import annotations

__all__ = [
    "__version__",
    "categories",
    "cli",
    "config",
    "crud",
    "database",
    "errors",
    "expenses",
    "formulas",
    "logging",
    "models",
    "oauth",
    "provisioning",
    "schemas",
    "server",
    "sessions",
    "sheets",
    "token_guard",
]

__version__ = "1.0.0"
