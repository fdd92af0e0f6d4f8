"""Core tooling shared by the API and UI suites: config, logging, file locks and UI idle detection."""
