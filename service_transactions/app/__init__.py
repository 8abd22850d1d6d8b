"""
Transaction Proxy Service package.

The service fronts the public spending API, serving paginated transaction
listings from a local record store merged with freshly fetched records.

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.pipeline: Fetch-merge-paginate pipeline (models, fingerprints, validation,
  reconciliation, upstream streaming, pagination).
- app.adapters: HTTP client for the upstream spending API.
- app.persistence: Record store contract and backends.
- app.caching: Cache policy on top of the store and memory housekeeping.
"""
