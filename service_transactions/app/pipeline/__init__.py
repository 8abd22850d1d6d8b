"""
Transaction pipeline package.

Flow for one request:
- validation: reject malformed queries before any I/O
- reconciler: load cached results and the ids they cover
- fetcher: stream fresh records from upstream, persisting in the background
- pagination: concatenate (cache first), cap, slice, derive page metadata
- service: orchestrates the above

Modules here hold no cross-request state apart from the persistence
dispatcher's task bookkeeping.
"""
