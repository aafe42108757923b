"""
MEV bundle engine: sandwich and flash-loan arbitrage bundles submitted to a private relay
"""

__version__ = "1.0.0"
