"""
Versioned rule tables shared by every estimator
"""

from .catalog import RuleCatalog, CatalogLoader, TierRule, AddOnRule, DEFAULT_CATALOG_PATH, normalize_name

__all__ = ['RuleCatalog', 'CatalogLoader', 'TierRule', 'AddOnRule', 'DEFAULT_CATALOG_PATH', 'normalize_name']
