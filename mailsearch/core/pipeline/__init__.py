"""Import and enrichment pipeline"""
from .ingestion import ImportService, ImportResult, EnrichmentSummary

__all__ = ['ImportService', 'ImportResult', 'EnrichmentSummary']
