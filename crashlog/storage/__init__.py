"""
Record store contract and its file-backed implementation.
"""
