"""
REST API for the tax-lot harvesting engine.
"""
