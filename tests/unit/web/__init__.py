"""Unit tests for SiteCost web route modules.

This package contains unit tests for individual route modules.
Each route module should have a corresponding test file.

Structure:
    tests/unit/web/
    ├── test_app.py                   # Error mapping, request id middleware
    ├── test_routes_corrections.py    # Correction log routes
    ├── test_routes_cost_tracking.py  # Cost tracking routes
    ├── test_routes_health.py         # Health check
    ├── test_routes_mappings.py       # Mapping override/unmatch routes
    └── test_routes_matching.py       # Batch matching routes

Testing pattern:
    - Use FastAPI's TestClient for route testing
    - Override database and orchestrator dependencies
    - Test request/response validation
    - Test error handling
"""
