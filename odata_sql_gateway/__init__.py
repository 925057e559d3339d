"""SQL Server to OData/REST gateway driven by JSON endpoint configuration."""

__version__ = "1.0.0"
