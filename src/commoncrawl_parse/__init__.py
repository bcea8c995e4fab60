"""Common Crawl parse pipeline tooling."""
