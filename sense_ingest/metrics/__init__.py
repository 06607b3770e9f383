from .queue_metrics import QueueMetricsReporter, flatten_queue_metrics

__all__ = ["QueueMetricsReporter", "flatten_queue_metrics"]
