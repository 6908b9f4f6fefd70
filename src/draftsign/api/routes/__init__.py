"""
API route modules.
"""

from draftsign.api.routes import contracts, signing

__all__ = ["contracts", "signing"]
