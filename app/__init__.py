"""Byte-level service boundary and command-line interface."""
