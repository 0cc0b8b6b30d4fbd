"""Multi-provider invoice parsing: strategies, cost guard and fallback orchestration."""
