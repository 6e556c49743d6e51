"""HTTP API for deposit flows and operator visibility."""
