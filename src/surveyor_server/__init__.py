"""surveyor_server — local FastAPI API over the surveyor_flows engine.

The UI, the Sync & Cache layer and the Upload layer drive flow runs through
this stateless HTTP API: flow caching, run stepping and resumption, and
submission hand-off for upload.
"""
