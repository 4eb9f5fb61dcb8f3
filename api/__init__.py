"""HTTP API for the retrieval backend."""
