"""
Database, Redis, locking and pub/sub
"""
