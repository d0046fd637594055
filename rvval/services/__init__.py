"""Resolution services: cascade orchestration, candidate selection, reconciliation and market rates."""
