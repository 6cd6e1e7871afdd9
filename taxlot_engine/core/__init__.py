"""
Core infrastructure: configuration, database models, errors and the lot ledger.
"""
