"""
Infrastructure package for the HKG pipeline.

This package contains infrastructure components including data access, logging,
configuration parsing, and other cross-cutting concerns.
"""
