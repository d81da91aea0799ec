"""HTTP surface for the briefing service."""
