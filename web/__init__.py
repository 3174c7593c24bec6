# HTTP API server
