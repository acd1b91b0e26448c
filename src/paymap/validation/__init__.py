"""Validation package for paymap.

This package checks canonical place records against the business rules that
the structural schema cannot express.
"""
