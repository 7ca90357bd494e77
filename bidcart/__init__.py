"""
BidCart auction lifecycle and bidding engine
"""
__version__ = "1.0.0"
