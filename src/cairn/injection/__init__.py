"""Contextual relevance engine: which records to surface for a trigger."""
