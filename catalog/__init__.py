"""
Core of the book rating catalog.

This package holds the logic that does not depend on the HTTP layer:
- Book record storage and field validation
- The rating ledger (one rating per user, incremental average)
- Authorization checks (identity and ownership)
- Catalog listing and best-rated queries
"""
