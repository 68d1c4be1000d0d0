"""Pure heuristics over SQL text, schemas and result rows."""
