# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")
    HEALTH_CHECK_ENDPOINT = os.environ.get("HEALTH_CHECK_ENDPOINT", "/health")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Smart Groups")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class SmartGroupsMonitoring:
    """Prometheus metric helpers for smart-group generation and review."""

    GENERATE_LATENCY = Histogram(
        "smart_groups_generate_seconds",
        "Latency histogram for smart group generation.",
        labelnames=("mode", "status"),
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    )
    GENERATE_ENTRY_COUNT = Histogram(
        "smart_groups_generate_entries",
        "Number of members considered per generation.",
        labelnames=("mode",),
        buckets=(0, 10, 50, 100, 500, 1000, 5000, 15000, 50000),
    )
    OPERATION_COUNTER = Counter(
        "smart_groups_operations_total",
        "Smart group operations by outcome.",
        labelnames=("operation", "status"),
    )

    @classmethod
    def record_generate(cls, *, mode: str, status: str, duration_seconds: float, entry_count: int):
        cls.GENERATE_LATENCY.labels(mode=mode, status=status).observe(max(duration_seconds, 0.0))
        cls.OPERATION_COUNTER.labels(operation="generate", status=status).inc()
        if status == "success":
            cls.GENERATE_ENTRY_COUNT.labels(mode=mode).observe(float(max(entry_count, 0)))

    @classmethod
    def record_operation(cls, *, operation: str, status: str):
        cls.OPERATION_COUNTER.labels(operation=operation, status=status).inc()
