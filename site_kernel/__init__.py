"""
Site Kernel

Shared foundation for construction-site materials management:
- Structured logging and typed errors
- Quantity, item-identity and document value types
- Declarative persistence base and session handling
"""

__version__ = "0.1.0"
