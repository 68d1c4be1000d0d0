"""SQL text generation: statement builders, templates, trend queries and composition."""
