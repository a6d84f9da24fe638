"""
Engines and data model of the crash logger.
"""
