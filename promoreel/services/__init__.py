"""Shared services: retry, polling, costs, storage, media tools and vendor clients."""
