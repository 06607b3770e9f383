"""Qlik Sense telemetry bridge.

Recibe eventos UDP (user/log events) y eventos de auditoría HTTP, y los
reenvía a los destinos configurados (InfluxDB v1/v2/v3, Parquet, QVD).
"""

__version__ = "0.4.0"
