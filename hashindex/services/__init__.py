"""
Services used by the core engine.

- Content hashing
- State file persistence
- Settings management
"""
