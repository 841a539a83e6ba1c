"""
Orchestration Layer - Workflow Coordination

This layer coordinates the entire sync run.
- Pure workflow coordination
- No business logic
- Composes extract, transform, and load operations page by page
"""
