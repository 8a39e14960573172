"""
Sports Feed - breaking sports news monitor.

This package polls sports RSS feeds, scores stories for urgency, rewrites
them with an LLM and delivers them to Discord, email or webhooks, with a
retry coordinator and a budget monitor that can pause the pipeline.

Main entry point is the CLI via the `sports-feed` command.

Example:
    $ sports-feed run -c config.yaml
"""

__all__ = ["__version__", "AppConfig", "load_config", "PollingOrchestrator", "build_runtime"]
__version__ = "0.1.0"

from .config import AppConfig, load_config
from .orchestrator import PollingOrchestrator
from .scheduler import build_runtime
