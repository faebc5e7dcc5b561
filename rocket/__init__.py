"""
Rocket - a batteries-included web application scaffold
"""

from rocket.app import Rocket
from rocket.config.settings import VERSION

__version__ = VERSION

__all__ = ['Rocket', 'VERSION']
