"""Registry — persistent storage and text index for VIRT name records.

The registry provides:
- Cataloging: one record per (label, tag) pair
- Ownership: a salted digest of each record's secret key
- Discovery: weighted full-text search over display metadata
"""
