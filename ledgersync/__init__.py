"""
Ledger Sync - Source Package

Offline-first bookkeeping core for a small company: employees record
income and expenses, managers review, approve and book them, and every
change is mirrored to a shared spreadsheet endpoint.

DESIGN PRINCIPLES:
1. The local store commits first and is never rolled back by sync
2. Remote failures are recoverable; store failures are fatal
3. Unknown remote data is read as the least-advanced state
4. Every sync step is auditable
5. Storage and remote are swappable behind interfaces
"""

__version__ = "1.0.0"
__author__ = "Ledger Sync Team"
