"""Consistency checks across record files, index.json and graph.json."""
