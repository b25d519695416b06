"""
Application services: resilience, cache, price store, ingestion
orchestration and scheduling.
"""
