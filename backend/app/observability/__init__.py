"""Log shipping for the billing service."""

from app.observability.axiom_sink import AxiomLogSink, SinkForwarder

__all__ = ["AxiomLogSink", "SinkForwarder"]
