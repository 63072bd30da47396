"""Submission, cleanup, read-side and reconciliation pipelines.

Each step is callable on its own so it can be exercised outside a request
(e.g. the orphan sweep runs from a script).
"""
