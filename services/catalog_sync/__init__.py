"""
Catalog Sync - loads, persists and broadcasts the chemical test catalog and
the settings aggregate across the document store, HTTP API, bundled
snapshot and local cache tiers.
"""
