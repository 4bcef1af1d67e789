"""
Model package initializer.

Importing it registers every ORM mapping, so scripts that only touch the DB
layer see the full metadata.
"""

# Import side-effects: register ORM mappings.
from riscura_vault.models import probo_integration  # noqa: F401
