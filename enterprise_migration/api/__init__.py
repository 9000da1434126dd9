"""HTTP API for running migrations and operating their reliability features."""
