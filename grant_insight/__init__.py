"""Grant Insight: faceted search over Japanese grant and subsidy listings."""
