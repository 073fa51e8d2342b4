"""Task dependency engine.

This package provides the task model, the dependency graph validator, the
status resolver, the file-backed entity store and the service that
orchestrates them inside store transactions.
"""
