"""
Stock ledger.

Models:
- Stock (on-hand quantity per product per location, plus reorder threshold)
- InventoryMovement (append-only signed deltas; the only way Stock changes)
"""
