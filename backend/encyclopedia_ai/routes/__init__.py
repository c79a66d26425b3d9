"""HTTP routers: assistant endpoints, liveness and Prometheus metrics."""
