"""
Configuration, logging, errors, metrics
"""
