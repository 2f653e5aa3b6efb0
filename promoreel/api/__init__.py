"""FastAPI application exposing the pipeline over HTTP."""
