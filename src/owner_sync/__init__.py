"""
owner-sync - Deal owner attribution pipeline

Fetches deals page by page from the CRM, looks up the owner history of each
deal's associated company and writes back the owner that was in effect when
the deal was created.
"""

__version__ = "1.0.0"
