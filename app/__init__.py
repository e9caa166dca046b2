# -*- coding: utf-8 -*-
"""
TRRCMS Import Pipeline Application Core
"""

from .config import Config, Vocabularies

__all__ = ["Config", "Vocabularies"]
