"""
Bank API

A small JSON banking service: accounts, login with signed tokens and a
token-gated account endpoint.
"""

__version__ = "1.0.0"
