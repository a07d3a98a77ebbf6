"""Infrastructure adapters for the document store, identity provider, media and workers."""
