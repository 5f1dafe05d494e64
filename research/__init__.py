"""
Research ingestion pipeline.

Modules
───────
models       Pydantic models (Source, Query, Result, HistoryEntry, …)
db           SQLite persistence and table CRUD helpers
sources      source registry (create, update, soft-disable, mark crawled)
queries      saved queries and their run schedule
results      per-query result batches with supersession
history      append-only audit log
categorizer  source type inference from URLs
firecrawl    search/scrape client
scorer       Claude analysis prompt + response parsing
fetcher      source selection and per-source fetching
aggregator   dedup → freshness → rank → truncate
pipeline     ResearchService: query runs and single-source crawls
scheduler    runs due scheduled queries
"""
