"""
Collaborators consumed by the engine: asset master, price feed, tax profiles,
transaction history and the correlation table.
"""
