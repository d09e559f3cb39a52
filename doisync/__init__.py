"""DOISYNC - DataCite DOI registry synchronization engine."""

__version__ = "0.1.0"
__author__ = "GFZ Data Services"
__copyright__ = "Copyright (c) 2025 GFZ Helmholtz Centre for Geosciences"
__license__ = "MIT"
__description__ = "Bulk import and registration of DataCite DOIs with a safe test/production policy"
