"""
Extract Layer - I/O Against the CRM

This layer handles all reads from the remote CRM with no attribution logic.
- No imports from transform or load layers
- Paging, association and history lookups
- Rate limiting and retries come from coreutils.request
"""
