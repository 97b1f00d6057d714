"""botguard: distributed rate limiting for chat bots."""
