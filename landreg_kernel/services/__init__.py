"""Kernel services.  Every service flushes; none commits."""
