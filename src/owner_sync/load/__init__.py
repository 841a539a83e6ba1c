"""
Load Layer - Write-Back

This layer handles all writes to the CRM.
- Owner updates, one call per record or one per chunk
- Per-record success/failure outcomes
- No attribution logic, just I/O operations
"""
