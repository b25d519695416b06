"""
Luzzia electricity price ingestion service.

Fetches day-ahead hourly electricity prices, stores them in InfluxDB and
serves cached derived views (dashboard stats, leveled prices, recommendations).
"""

__version__ = "1.0.0"
