"""Newsletter digest: RSS/Atom aggregation with LLM categorization."""
