"""
Core engine: data models, errors, tree scanning, snapshot comparison and
synchronization.
"""
