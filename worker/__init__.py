"""
Standalone background processes
"""
