"""paymap: canonicalization and merge engine for crypto-payment place listings.

This package turns loosely shaped owner, community and report submissions into
strict canonical place records, merges them into a sharded record store with
trust-aware conflict resolution, and audits the store against business rules.
"""
