"""Deprecated entry points; see :mod:`renewal_engine.compat.legacy`."""
