"""Registrar package"""

from . import adapters as adapters

__version__ = "0.4.0"
