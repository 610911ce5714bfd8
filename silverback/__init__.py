"""
Silverback DEX: constant-product pricing engine, pool state, pool registry and
multi-venue quote aggregation.
"""

__version__ = "0.1.0"
