"""kryten-analytics: batch chat analytics microservice."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kryten-analytics")
except PackageNotFoundError:
    __version__ = "0.0.0"
