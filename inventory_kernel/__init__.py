"""
Inventory Kernel

The append-only stock ledger core of the warehouse application:
- Immutable movement records
- Atomic running-quantity snapshots per site and location
- Weighted-average product costing with an audit trail
- Unit-of-measure conversion into canonical stock units
"""

__version__ = "0.1.0"
