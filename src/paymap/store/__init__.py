"""Data store package for paymap.

This package provides the JSON shard store for canonical place records and the
reader for the submission inbox.
"""
