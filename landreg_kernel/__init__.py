"""
Land Records Kernel

Maker-checker workflow core for a land registry:
- Approval requests with an append-only decision log
- Multi-step registration drafts (wizard sessions)
- Shared transaction boundary for every component
- Structured logging and a typed error hierarchy
"""

__version__ = "0.1.0"
