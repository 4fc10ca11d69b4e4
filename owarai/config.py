import os

# Persisted file next to the package unless overridden
DB_PATH = os.environ.get(
    "OWARAI_DB_PATH", os.path.join(os.path.dirname(__file__), "owarai.sqlite")
)

LOG_LEVEL = os.environ.get("OWARAI_LOG_LEVEL", "INFO")
