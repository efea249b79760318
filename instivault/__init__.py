"""
InstiVault: institute membership and access-controlled document distribution.
"""
__version__ = "0.1.0"
