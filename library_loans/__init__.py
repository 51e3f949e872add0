"""Library Loans - core application package

This package contains the core application modules including:
- API endpoints (api.py)
- Catalog, member registry and loan ledger (catalog.py, registry.py, ledger.py)
- CLI interface (cli.py)
- Record classes (book.py, member.py, loan.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
