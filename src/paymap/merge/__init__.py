"""Merge package for paymap.

This package decides which existing record a submission refers to and folds
the submission into it with trust-aware conflict resolution.
"""
