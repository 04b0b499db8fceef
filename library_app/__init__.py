"""Library lending service with REST and gRPC front ends over one shared ledger."""
