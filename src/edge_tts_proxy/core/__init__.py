"""
Core Infrastructure for edge-tts-proxy.

    - config.py: Settings loading and validation
    - errors.py: Error codes and the ProxyError hierarchy
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
