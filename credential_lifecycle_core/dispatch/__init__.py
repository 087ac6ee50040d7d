from .bootstrap_queue import AzureBootstrapQueue, BootstrapQueue, InProcessBootstrapQueue, JobRunner

__all__ = ["AzureBootstrapQueue", "BootstrapQueue", "InProcessBootstrapQueue", "JobRunner"]
