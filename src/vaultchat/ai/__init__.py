"""AI client, providers, prompts, and turn orchestration."""
