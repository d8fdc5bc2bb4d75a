"""
Ledger Kernel

A multi-tenant double-entry bookkeeping engine with:
- Draft -> posted -> reversed journal entry lifecycle
- Immutable ledger postings with incrementally maintained period balances
- Reversals, corrections and scheduled auto-reversals
- Simple, comparative and working trial balances
"""

__version__ = "0.1.0"
