"""
Transformation Layer - Pure, Deterministic Functions

This layer decides which owner each deal should have.
- Pure functions (input → output)
- No I/O operations
- Unit testable
- Deterministic results
"""
