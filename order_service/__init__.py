"""OrderService: order HTTP API and event publishers."""
