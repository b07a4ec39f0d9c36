"""Event chat: send pipeline, reactions and the REST/socket handlers."""
from .pipeline import ChatPipeline, ReactionLedger, get_pipeline, reaction_ledger

__all__ = ["ChatPipeline", "ReactionLedger", "get_pipeline", "reaction_ledger"]
