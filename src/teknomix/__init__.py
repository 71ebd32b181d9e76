"""
Tekno Mix - tempo-locked techno mix generator
"""

__version__ = "1.0.0"
