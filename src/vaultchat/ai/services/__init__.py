"""AI service helpers (context policy, summarizer, planning, memories)."""
