"""Candidate intake backend: models, blob storage, validation, submission pipeline and API.

A submission stores a candidate, its education and experience entries and up
to three resume files atomically across the database and the blob store.
"""
