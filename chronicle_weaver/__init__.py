"""Chronicle Weaver — multi-provider orchestration for an AI-driven adventure game."""
