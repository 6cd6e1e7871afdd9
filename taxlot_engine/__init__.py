"""
Tax-lot cost-basis and harvesting engine.

Tracks every acquisition as an individually priced tax lot, closes lots under
HIFO/FIFO/Specific-ID, guards against wash sales, recommends correlated proxy
assets and executes loss harvests atomically.
"""
__version__ = "1.0.0"
