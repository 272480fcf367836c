"""
Synthesis Pipeline Components.

This package provides the stages a speech job runs through:
    - chunker.py: Sentence-aware text splitting
    - token_manager.py: Signed handshake and session token cache
    - client.py: Markup building and per-chunk upstream calls
    - scheduler.py: Ordered, concurrency-bounded fan-out
    - assembler.py: Buffered or streamed reassembly
"""
