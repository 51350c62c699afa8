"""Application package for the testcraft quiz authoring backend.

This package exposes the store, guard, reconciler and service modules
used by the FastAPI application. Individual modules contain the
concrete implementations and documentation.
"""
