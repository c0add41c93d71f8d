"""Bookstore vertical configuration.

Re-exports the BookstoreConfig from the patterns module, resolved once from
the process environment.
"""

from patterns.domain_config import BookstoreConfig

config = BookstoreConfig.from_env()
