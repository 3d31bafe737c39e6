"""Conversion pipeline internals."""
