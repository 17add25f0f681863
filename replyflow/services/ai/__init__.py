"""AI response pipeline — configuration, providers, prompts and orchestration."""
