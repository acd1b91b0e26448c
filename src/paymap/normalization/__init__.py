"""Normalization package for paymap.

This package turns loosely-typed submission data (free-text payment blocks,
legacy flags, URL lists, social handles) into the strict canonical schema. It
holds the chain registry, the payment and evidence normalizers, and the form
normalizer that produces submission patches.
"""
