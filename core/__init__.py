"""Core module - platform-neutral building blocks of the sync engine.

Error taxonomy, retrying requester, configuration, data models, storage,
credential encryption and observability. Nothing here knows about a
specific CRM; platform-specific logic belongs in /connectors/.
"""

__version__ = "1.0.0"
