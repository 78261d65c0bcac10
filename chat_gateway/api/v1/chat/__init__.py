"""
Chat completion pipeline: request building, SSE parsing, event normalization,
chunk emission and orchestration.
"""
