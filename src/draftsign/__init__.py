"""
DraftSign: AI-assisted contract drafting and e-signature service.

This package implements the contract document model, the collaborative
editing rules between AI regeneration, manual edits and placeholder
substitution, and the token-based signing workflow that takes a draft
through to a completed, signed contract.
"""

__version__ = "0.1.0"
__author__ = "DraftSign Team"

from draftsign.config import get_settings

__all__ = ["get_settings", "__version__"]
