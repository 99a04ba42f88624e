"""Shared schemas, errors, and result export helpers."""
