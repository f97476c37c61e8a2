"""
Taxflow Kernel - workflow orchestration core

Multi-step tax and invoicing processes driven through explicit state machines:
- Immutable workflow definition registry
- Type-directed step dispatch over narrow collaborator ports
- Optimistic concurrency on workflow instances
- Durable retry queue with exponential backoff for KSeF submissions
"""

__version__ = "0.1.0"
