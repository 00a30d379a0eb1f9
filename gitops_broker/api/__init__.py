"""Open Service Broker HTTP boundary."""
