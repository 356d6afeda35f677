"""
Inventory Kernel

An append-only stock movement ledger with:
- Balances derived on read, never stored
- Non-negative stock enforced under row-level locks
- Bill-of-materials expansion of manufacturing events
- Audited mutations with compensating reverts
- Low-stock alerts dispatched after commit through an outbox
"""

__version__ = "0.1.0"
